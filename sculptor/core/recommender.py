"""
Resource recommender for Sculptor.

This module turns utilization percentiles and OOM-kill signals into
CPU/memory requests and limits for every container of a deployment.

The recommender talks to two collaborators:
- a DeploymentInspector, resolving deployments and OOM-kill history
- a MetricsSource, resolving percentile and peak usage over a time window

Failures resolving the deployment abort the run. Failures fetching a single
metric are logged and the metric is treated as zero, so floors still apply.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sculptor.core.schemas import (
    AllRecommendations,
    AnalysisParams,
    AnalysisTarget,
    CPURecommendation,
    DeploymentInfo,
    NamedRecommendation,
    OOMSignal,
    Recommendation,
)

logger = logging.getLogger(__name__)

MiB = 1024 * 1024


class RecommendationError(Exception):
    """Base exception for errors that make a recommendation meaningless."""
    pass


class DeploymentNotFoundError(RecommendationError):
    """Raised when the deployment does not exist."""
    pass


class DeploymentLookupError(RecommendationError):
    """Raised when the deployment could not be retrieved."""
    pass


class NoContainersError(RecommendationError):
    """Raised when a deployment declares no containers."""
    pass


class ContainerNotFoundError(RecommendationError):
    """Raised when the requested container is not part of the deployment."""
    pass


@dataclass(frozen=True)
class RecommenderSettings:
    """Buffers, thresholds and floors used by the recommender."""
    # Main containers
    memory_buffer_percent: int = 120
    oom_memory_multiplier_percent: int = 150
    oom_fallback_memory_bytes: int = 512 * MiB
    min_memory_bytes: int = 64 * MiB
    min_cpu_request_millicores: int = 50
    min_cpu_limit_millicores: int = 100
    spikiness_threshold: float = 2.0
    spikiness_cpu_buffer: float = 1.25

    # Init containers
    init_memory_buffer_percent: int = 115
    init_memory_default_bytes: int = 128 * MiB
    init_cpu_request_millicores: int = 100
    init_cpu_limit_millicores: int = 1000


DEFAULT_SETTINGS = RecommenderSettings()


class DeploymentInspector(ABC):
    """
    Resolves deployments and reports OOM-kill history.

    Implementations raise a RecommendationError subclass from resolve()
    when the deployment cannot be examined.
    """

    @abstractmethod
    def resolve(self, namespace: str, deployment_name: str) -> DeploymentInfo:
        raise NotImplementedError

    @abstractmethod
    def oom_signal(self, deployment: DeploymentInfo, container_name: str) -> OOMSignal:
        raise NotImplementedError


class MetricsSource(ABC):
    """
    Resolves utilization values for a container over a time window.

    Both methods return 0.0 when no data exists and raise on query failure.
    """

    @abstractmethod
    def percentile(
        self,
        p: float,
        resource: str,
        namespace: str,
        deployment_name: str,
        container_name: str,
        window: str
    ) -> float:
        raise NotImplementedError

    @abstractmethod
    def max_over_window(
        self,
        namespace: str,
        deployment_name: str,
        container_name: str,
        window: str
    ) -> float:
        raise NotImplementedError


def to_millicores(cores: float) -> int:
    """Convert a CPU value in cores to whole millicores, rounding down."""
    return int(math.floor(cores * 1000))


class Recommender:
    """
    Computes resource recommendations for the containers of a deployment.

    Every container is processed sequentially and independently. The
    recommender holds no state between calls, so identical collaborator
    responses always produce identical recommendations.
    """

    def __init__(
        self,
        inspector: DeploymentInspector,
        metrics: MetricsSource,
        settings: Optional[RecommenderSettings] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize the recommender.

        Args:
            inspector: Collaborator resolving deployments and OOM signals.
            metrics: Collaborator resolving utilization metrics.
            settings: Buffers, thresholds and floors. Defaults apply if omitted.
            log: Logger for progress and warnings. Uses the module logger if omitted.
        """
        self._inspector = inspector
        self._metrics = metrics
        self._settings = settings or DEFAULT_SETTINGS
        self._log = log or logger

    @property
    def settings(self) -> RecommenderSettings:
        return self._settings

    def calculate_for_deployment(self, params: AnalysisParams) -> list[NamedRecommendation]:
        """
        Compute recommendations for the main containers of a deployment.

        Args:
            params: Deployment, optional target container and time range.

        Returns:
            One NamedRecommendation per analyzed container, in declaration
            order. Empty if the target container is not a main container.

        Raises:
            RecommendationError: If the deployment cannot be resolved.
        """
        deployment = self._inspector.resolve(params.namespace, params.deployment_name)
        names = self._select_containers(deployment.containers, params.target_container)

        if not names:
            self._log.info(
                f"Container '{params.target_container}' is not a main container "
                f"of {params.namespace}/{params.deployment_name}"
            )
            return []

        return [
            NamedRecommendation(
                container_name=name,
                recommendation=self._recommend_main_container(deployment, name, params),
            )
            for name in names
        ]

    def calculate_for_init_containers(self, params: AnalysisParams) -> list[NamedRecommendation]:
        """
        Compute recommendations for the init containers of a deployment.

        Init containers are not checked for OOM kills and always get the
        default CPU request and limit.

        Raises:
            RecommendationError: If the deployment cannot be resolved.
        """
        deployment = self._inspector.resolve(params.namespace, params.deployment_name)
        names = self._select_containers(deployment.init_containers, params.target_container)

        if not names:
            self._log.debug(
                f"No init containers to analyze in {params.namespace}/{params.deployment_name}"
            )
            return []

        return [
            NamedRecommendation(
                container_name=name,
                recommendation=self._recommend_init_container(name, params),
            )
            for name in names
        ]

    def calculate_for_all(self, params: AnalysisParams) -> AllRecommendations:
        """
        Compute recommendations for both main and init containers.

        Raises:
            RecommendationError: If either half fails to resolve the deployment.
            ContainerNotFoundError: If a target container matches neither a
                main nor an init container.
        """
        try:
            main = self.calculate_for_deployment(params)
        except RecommendationError as e:
            raise RecommendationError(f"failed to calculate main containers: {e}") from e

        try:
            init = self.calculate_for_init_containers(params)
        except RecommendationError as e:
            raise RecommendationError(f"failed to calculate init containers: {e}") from e

        if params.target_container and not main and not init:
            raise ContainerNotFoundError(
                f"container '{params.target_container}' not found in deployment "
                f"{params.namespace}/{params.deployment_name}"
            )

        return AllRecommendations(main_containers=main, init_containers=init)

    def calculate(
        self,
        params: AnalysisParams,
        target: AnalysisTarget = AnalysisTarget.ALL
    ) -> AllRecommendations:
        """Compute recommendations for the containers selected by target."""
        target = AnalysisTarget(target)
        if target == AnalysisTarget.MAIN:
            return AllRecommendations(main_containers=self.calculate_for_deployment(params))
        if target == AnalysisTarget.INIT:
            return AllRecommendations(init_containers=self.calculate_for_init_containers(params))
        return self.calculate_for_all(params)

    def _select_containers(self, names: list[str], target: Optional[str]) -> list[str]:
        if not target:
            return list(names)
        return [name for name in names if name == target]

    # ------------------------------------------------------------------
    # Main containers
    # ------------------------------------------------------------------

    def _recommend_main_container(
        self,
        deployment: DeploymentInfo,
        container_name: str,
        params: AnalysisParams
    ) -> Recommendation:
        self._log.info(f"Analyzing container '{container_name}'")

        signal = self._check_oom(deployment, container_name)
        if signal.was_killed:
            memory = self._oom_memory(container_name, signal)
        else:
            memory = self._usage_memory(container_name, params)

        if memory < self._settings.min_memory_bytes:
            self._log.debug(
                f"Memory for '{container_name}' raised from {memory} to floor "
                f"{self._settings.min_memory_bytes} bytes"
            )
            memory = self._settings.min_memory_bytes

        return Recommendation(
            memory=memory,
            cpu=self._recommend_cpu(container_name, params),
            is_oom_killed=signal.was_killed,
        )

    def _check_oom(self, deployment: DeploymentInfo, container_name: str) -> OOMSignal:
        self._log.debug(f"Checking for OOMKilled events for '{container_name}'")
        try:
            return self._inspector.oom_signal(deployment, container_name)
        except Exception as e:
            self._log.warning(f"Could not check for OOM events for '{container_name}': {e}")
            return OOMSignal()

    def _oom_memory(self, container_name: str, signal: OOMSignal) -> int:
        self._log.warning(
            f"OOMKilled event detected for container '{container_name}' "
            f"(pod: {signal.pod_name or 'unknown'}); memory metrics will be ignored"
        )
        if signal.last_known_limit_bytes is None:
            self._log.warning(
                f"No memory limit set for '{container_name}', recommending "
                f"{self._settings.oom_fallback_memory_bytes} bytes"
            )
            return self._settings.oom_fallback_memory_bytes

        return signal.last_known_limit_bytes * self._settings.oom_memory_multiplier_percent // 100

    def _usage_memory(self, container_name: str, params: AnalysisParams) -> int:
        p99 = self._fetch(
            "P99 memory",
            container_name,
            lambda: self._metrics.percentile(
                0.99, "memory", params.namespace, params.deployment_name,
                container_name, params.time_range,
            ),
        )
        return int(p99) * self._settings.memory_buffer_percent // 100

    def _recommend_cpu(self, container_name: str, params: AnalysisParams) -> CPURecommendation:
        def percentile(p: float) -> float:
            return self._fetch(
                f"P{int(p * 100)} CPU",
                container_name,
                lambda: self._metrics.percentile(
                    p, "cpu", params.namespace, params.deployment_name,
                    container_name, params.time_range,
                ),
            )

        p90 = percentile(0.90)
        p99 = percentile(0.99)
        p50 = percentile(0.50)

        limit_cores = p99
        spiky = False
        if p50 > 0:
            ratio = p99 / p50
            if ratio > self._settings.spikiness_threshold:
                spiky = True
                limit_cores = p99 * self._settings.spikiness_cpu_buffer
                self._log.warning(
                    f"High CPU spikiness detected for '{container_name}' "
                    f"(P99/P50 ratio: {ratio:.2f} > threshold: {self._settings.spikiness_threshold:.2f}). "
                    f"Applying {(self._settings.spikiness_cpu_buffer - 1) * 100:.0f}% extra buffer to CPU limit."
                )

        request = max(to_millicores(p90), self._settings.min_cpu_request_millicores)
        limit = max(to_millicores(limit_cores), self._settings.min_cpu_limit_millicores)
        if limit < request:
            limit = request

        return CPURecommendation(request=request, limit=limit, spikiness_warning=spiky)

    # ------------------------------------------------------------------
    # Init containers
    # ------------------------------------------------------------------

    def _recommend_init_container(self, container_name: str, params: AnalysisParams) -> Recommendation:
        self._log.info(f"Analyzing init container '{container_name}'")

        peak = self._fetch(
            "max memory",
            container_name,
            lambda: self._metrics.max_over_window(
                params.namespace, params.deployment_name, container_name, params.time_range,
            ),
        )

        if peak > 0:
            memory = int(peak) * self._settings.init_memory_buffer_percent // 100
        else:
            self._log.info(
                f"No memory data for init container '{container_name}', using defaults"
            )
            memory = self._settings.init_memory_default_bytes

        return Recommendation(
            memory=memory,
            cpu=CPURecommendation(
                request=self._settings.init_cpu_request_millicores,
                limit=self._settings.init_cpu_limit_millicores,
            ),
        )

    def _fetch(self, metric_name: str, container_name: str, query) -> float:
        """Run a metric query, degrading failures and invalid values to zero."""
        try:
            value = query()
        except Exception as e:
            self._log.warning(
                f"Failed to fetch {metric_name} for '{container_name}', assuming 0: {e}"
            )
            return 0.0

        if value is None or math.isnan(value) or math.isinf(value) or value < 0:
            return 0.0
        return float(value)


def create_recommender(
    inspector: DeploymentInspector,
    metrics: MetricsSource,
    settings: Optional[RecommenderSettings] = None,
    log: Optional[logging.Logger] = None,
) -> Recommender:
    """
    Factory function to create a recommender.

    Args:
        inspector: Deployment inspector collaborator.
        metrics: Metrics source collaborator.
        settings: Optional settings override.
        log: Optional logger override.

    Returns:
        Configured Recommender instance.
    """
    return Recommender(inspector, metrics, settings=settings, log=log)
