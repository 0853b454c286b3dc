"""
Flask application factory for Sculptor.

The service exposes the recommender over HTTP. Collaborators are attached
to ``app.extensions`` so routes and tests share a single instance.
"""

import logging
from typing import Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from sculptor.config import get_config, BaseConfig
from sculptor.core.recommender import Recommender, create_recommender
from sculptor.core.schemas import ErrorResponse
from sculptor.logging_config import configure_logging

RECOMMENDER_EXTENSION = "sculptor.recommender"
PROMETHEUS_EXTENSION = "sculptor.prometheus"

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def setup_logging(app: Flask) -> None:
    """Route application logs through the shared root logger setup."""
    configure_logging(
        level=app.config.get("LOG_LEVEL", "INFO"),
        log_format=app.config.get("LOG_FORMAT", "json"),
    )
    app.logger.setLevel(logging.getLogger().level)


def init_collaborators(app: Flask, recommender: Optional[Recommender] = None) -> None:
    """
    Attach the Prometheus client and the recommender to the application.

    The Kubernetes client is only built when no recommender is supplied,
    so tests can run without cluster access.

    Args:
        app: Flask application instance
        recommender: Optional pre-built recommender
    """
    from sculptor.core.metrics_collector import (
        PrometheusClient,
        PrometheusConfig,
        PrometheusMetricsSource,
    )

    prometheus = PrometheusClient(PrometheusConfig(
        base_url=app.config["PROMETHEUS_BASE_URL"],
        timeout=app.config["PROMETHEUS_TIMEOUT"],
        verify_ssl=app.config.get("PROMETHEUS_VERIFY_SSL", True),
    ))
    app.extensions[PROMETHEUS_EXTENSION] = prometheus

    if recommender is None:
        from sculptor.core.k8s_inspector import create_inspector

        inspector = create_inspector(
            kubeconfig=app.config.get("KUBECONFIG"),
            context=app.config.get("KUBE_CONTEXT"),
            timeout=app.config["KUBE_TIMEOUT"],
        )
        recommender = create_recommender(inspector, PrometheusMetricsSource(prometheus))

    app.extensions[RECOMMENDER_EXTENSION] = recommender


def register_blueprints(app: Flask) -> None:
    """
    Mount the health and recommendation blueprints.

    Args:
        app: Flask application instance
    """
    from sculptor.routes.health import health_bp
    from sculptor.routes.recommendations import recommendations_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(recommendations_bp, url_prefix="/api/v1")


def register_error_handlers(app: Flask) -> None:
    """
    Answer HTTP errors with the JSON error body used by the API routes.

    Args:
        app: Flask application instance
    """

    def error_body(code: str, message: str, status: int):
        return jsonify(ErrorResponse(code=code, message=message).model_dump()), status

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        code = HTTP_ERROR_CODES.get(error.code, "HTTP_ERROR")
        return error_body(code, error.description or error.name, error.code)

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("Unhandled error while serving request")
        return error_body("INTERNAL_ERROR", "An internal error occurred", 500)


def create_app(
    config: Optional[BaseConfig] = None,
    recommender: Optional[Recommender] = None
) -> Flask:
    """
    Build the Sculptor Flask application.

    Args:
        config: Configuration object. Chosen by FLASK_ENV when omitted.
        recommender: Recommender serving the API. Built from the Kubernetes
            and Prometheus settings when omitted.

    Returns:
        Flask application instance
    """
    app = Flask(__name__)
    app.config.from_object(config or get_config())

    setup_logging(app)
    init_collaborators(app, recommender)
    register_blueprints(app)
    register_error_handlers(app)

    app.logger.info(
        f"Sculptor initialized (prometheus: {app.config['PROMETHEUS_BASE_URL']}, "
        f"default range: {app.config['DEFAULT_TIME_RANGE']})"
    )
    return app
