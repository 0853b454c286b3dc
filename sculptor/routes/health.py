"""
Probe endpoints for running Sculptor inside Kubernetes.
"""

import logging
from flask import Blueprint, jsonify, current_app

from sculptor import __version__
from sculptor.app import PROMETHEUS_EXTENSION
from sculptor.core.schemas import HealthResponse

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__)

SERVICE_NAME = "sculptor"


def _health(status: str, checks=None) -> dict:
    return HealthResponse(
        status=status,
        service=SERVICE_NAME,
        version=__version__,
        checks=checks,
    ).model_dump(exclude_none=True)


@health_bp.route("/api/v1/health", methods=["GET"])
def health():
    """Report that the process is up, with its version."""
    return jsonify(_health("healthy")), 200


@health_bp.route("/api/v1/health/ready", methods=["GET"])
def readiness():
    """
    Readiness probe.

    Sculptor cannot recommend anything without Prometheus, so the service
    is ready only while a trivial query succeeds.
    """
    prometheus = current_app.extensions[PROMETHEUS_EXTENSION]

    if prometheus.ping():
        check = {"status": "healthy", "url": prometheus.config.base_url}
        return jsonify(_health("ready", {"prometheus": check})), 200

    logger.error(f"Readiness check failed: Prometheus at {prometheus.config.base_url} is not answering")
    check = {"status": "unhealthy", "url": prometheus.config.base_url}
    return jsonify(_health("not_ready", {"prometheus": check})), 503


@health_bp.route("/api/v1/health/live", methods=["GET"])
def liveness():
    """Liveness probe, without dependency checks."""
    return jsonify(_health("alive")), 200
