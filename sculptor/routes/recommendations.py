"""
Recommendation API endpoints for Sculptor.

Provides a REST API for computing resource recommendations for a deployment.
"""

import logging
from flask import Blueprint, jsonify, request, current_app
from pydantic import ValidationError

from sculptor.app import RECOMMENDER_EXTENSION
from sculptor.core.presenter import collect_warnings, to_manifest_dict
from sculptor.core.recommender import (
    ContainerNotFoundError,
    DeploymentNotFoundError,
    RecommendationError,
    Recommender,
)
from sculptor.core.schemas import AnalysisParams, ErrorResponse, RecommendationRequest

logger = logging.getLogger(__name__)

recommendations_bp = Blueprint("recommendations", __name__)


def get_recommender() -> Recommender:
    """Get the recommender attached to the application."""
    return current_app.extensions[RECOMMENDER_EXTENSION]


def _is_not_found(error: RecommendationError) -> bool:
    # calculate_for_all chains the underlying error as the cause
    not_found = (DeploymentNotFoundError, ContainerNotFoundError)
    return isinstance(error, not_found) or isinstance(error.__cause__, not_found)


def error_response(code: str, message: str, status: int, details=None):
    """Build a JSON error response in the standard format."""
    body = ErrorResponse(code=code, message=message, details=details)
    return jsonify(body.model_dump()), status


@recommendations_bp.route("/recommendations/<namespace>/<deployment>", methods=["GET"])
def get_recommendations(namespace: str, deployment: str):
    """
    Compute resource recommendations for a deployment.

    Args:
        namespace: Namespace of the deployment
        deployment: Name of the deployment

    Query parameters:
        - container: only analyze this container
        - range: Prometheus range to analyze (default from config)
        - target: all, main or init (default all)

    Returns:
        - main_containers / init_containers recommendations
        - manifest: resource snippet ready for a Deployment manifest
        - warnings: OOM and CPU spikiness warnings
    """
    try:
        req = RecommendationRequest.model_validate(request.args.to_dict())
    except ValidationError as e:
        return error_response(
            "VALIDATION_ERROR",
            "Invalid query parameters",
            400,
            {"errors": e.errors(include_url=False, include_context=False)},
        )

    params = AnalysisParams(
        namespace=namespace,
        deployment_name=deployment,
        target_container=req.container,
        time_range=req.range or current_app.config["DEFAULT_TIME_RANGE"],
    )

    logger.info(
        f"Received recommendation request for {namespace}/{deployment} "
        f"(target: {req.target.value}, range: {params.time_range})"
    )

    try:
        recommendations = get_recommender().calculate(params, req.target)
    except RecommendationError as e:
        if _is_not_found(e):
            return error_response("NOT_FOUND", str(e), 404)
        logger.error(f"Recommendation failed: {e}")
        return error_response("UPSTREAM_ERROR", str(e), 502)

    body = recommendations.model_dump()
    body.update({
        "namespace": namespace,
        "deployment": deployment,
        "time_range": params.time_range,
        "target": req.target.value,
        "manifest": to_manifest_dict(recommendations),
        "warnings": collect_warnings(recommendations),
    })
    return jsonify(body), 200
