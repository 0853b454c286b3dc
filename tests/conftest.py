"""
Shared pytest fixtures for Sculptor tests.
"""

import logging

import pytest

from sculptor.app import create_app
from sculptor.config import TestConfig
from sculptor.core.recommender import (
    DeploymentInspector,
    MetricsSource,
    Recommender,
)
from sculptor.core.schemas import AnalysisParams, DeploymentInfo, OOMSignal


MiB = 1024 * 1024


class FakeInspector(DeploymentInspector):
    """In-memory deployment inspector."""

    def __init__(
        self,
        containers=("main-app",),
        init_containers=("init-setup",),
        oom_signals=None,
        resolve_error=None,
        oom_error=None,
    ):
        self.deployment = DeploymentInfo(
            name="test-deployment",
            namespace="test-ns",
            containers=list(containers),
            init_containers=list(init_containers),
            selector="app=test",
        )
        self.oom_signals = oom_signals or {}
        self.resolve_error = resolve_error
        self.oom_error = oom_error
        self.oom_checks = []

    def resolve(self, namespace, deployment_name):
        if self.resolve_error is not None:
            raise self.resolve_error
        return self.deployment

    def oom_signal(self, deployment, container_name):
        self.oom_checks.append(container_name)
        if self.oom_error is not None:
            raise self.oom_error
        return self.oom_signals.get(container_name, OOMSignal())


class FakeMetrics(MetricsSource):
    """In-memory metrics source keyed by (resource, percentile)."""

    def __init__(
        self,
        memory_p99=0.0,
        cpu_p90=0.0,
        cpu_p99=0.0,
        cpu_p50=0.0,
        init_memory_max=0.0,
        failing=(),
    ):
        self.values = {
            ("memory", 0.99): memory_p99,
            ("cpu", 0.90): cpu_p90,
            ("cpu", 0.99): cpu_p99,
            ("cpu", 0.50): cpu_p50,
            ("memory", "max"): init_memory_max,
        }
        self.failing = set(failing)
        self.calls = []

    def percentile(self, p, resource, namespace, deployment_name, container_name, window):
        key = (resource, p)
        self.calls.append((key, container_name, window))
        if key in self.failing:
            raise ConnectionError(f"metrics backend unavailable for {key}")
        return self.values[key]

    def max_over_window(self, namespace, deployment_name, container_name, window):
        key = ("memory", "max")
        self.calls.append((key, container_name, window))
        if key in self.failing:
            raise ConnectionError("metrics backend unavailable")
        return self.values[key]


@pytest.fixture(autouse=True)
def reset_logging():
    """Restore root logging after tests that call configure_logging()."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    logging.disable(logging.NOTSET)
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


@pytest.fixture
def params():
    """Analysis parameters for the fake deployment."""
    return AnalysisParams(
        namespace="test-ns",
        deployment_name="test-deployment",
        time_range="7d",
    )


@pytest.fixture
def inspector():
    """Deployment inspector with one main and one init container."""
    return FakeInspector()


@pytest.fixture
def metrics():
    """Metrics source with typical, non-spiky usage."""
    return FakeMetrics(
        memory_p99=100 * MiB,
        cpu_p90=0.2,
        cpu_p99=0.4,
        cpu_p50=0.25,
        init_memory_max=50 * MiB,
    )


@pytest.fixture
def recommender(inspector, metrics):
    """Recommender wired to the fake collaborators."""
    return Recommender(inspector, metrics)


@pytest.fixture
def app(recommender):
    """Create Flask test application serving the fake recommender."""
    return create_app(TestConfig(), recommender=recommender)


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()
