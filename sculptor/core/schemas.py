"""
Pydantic schemas for Sculptor.

This module defines the data structures used throughout Sculptor for:
- Recommendation results produced by the recommender
- Collaborator data transfer objects (deployment info, OOM signals)
- API request validation
"""

import re
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# Prometheus range format, e.g. "1h", "7d", "2w"
TIME_RANGE_PATTERN = re.compile(r"^[1-9][0-9]*[smhdwy]$")


# ============================================================================
# Enums
# ============================================================================

class AnalysisTarget(str, Enum):
    """Which containers of a deployment to analyze."""
    ALL = "all"
    MAIN = "main"
    INIT = "init"


# ============================================================================
# Recommendation Schemas
# ============================================================================

class CPURecommendation(BaseModel):
    """CPU request and limit in millicores."""
    model_config = ConfigDict(frozen=True)

    request: int = Field(..., ge=0)
    limit: int = Field(..., ge=0)
    spikiness_warning: bool = False


class Recommendation(BaseModel):
    """Resource recommendation for a single container."""
    model_config = ConfigDict(frozen=True)

    memory: int = Field(..., ge=0)  # in bytes
    cpu: CPURecommendation
    is_oom_killed: bool = False


class NamedRecommendation(BaseModel):
    """A recommendation bound to the container it was computed for."""
    model_config = ConfigDict(frozen=True)

    container_name: str
    recommendation: Recommendation


class AllRecommendations(BaseModel):
    """Recommendations for the main and init containers of a deployment."""
    model_config = ConfigDict(frozen=True)

    main_containers: list[NamedRecommendation] = Field(default_factory=list)
    init_containers: list[NamedRecommendation] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.main_containers and not self.init_containers


class AnalysisParams(BaseModel):
    """Inputs of a single recommendation run."""
    model_config = ConfigDict(frozen=True)

    namespace: str = "default"
    deployment_name: str = Field(..., min_length=1)
    target_container: Optional[str] = None
    time_range: str = "7d"

    @field_validator("time_range")
    @classmethod
    def validate_time_range(cls, value: str) -> str:
        if not TIME_RANGE_PATTERN.match(value):
            raise ValueError(
                f"invalid time range '{value}', use Prometheus range format like '1h', '7d', '2w'"
            )
        return value


# ============================================================================
# Collaborator Schemas
# ============================================================================

class DeploymentInfo(BaseModel):
    """A deployment resolved to its container names."""
    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    containers: list[str] = Field(default_factory=list)
    init_containers: list[str] = Field(default_factory=list)
    selector: Optional[str] = None  # label selector string for its pods


class OOMSignal(BaseModel):
    """Result of an OOM-kill check for one container."""
    model_config = ConfigDict(frozen=True)

    was_killed: bool = False
    pod_name: Optional[str] = None
    last_known_limit_bytes: Optional[int] = None


# ============================================================================
# API Request/Response Schemas
# ============================================================================

class RecommendationRequest(BaseModel):
    """Query parameters accepted by the recommendations endpoint."""
    container: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=253,
        description="Only analyze the container with this name"
    )
    range: Optional[str] = Field(
        default=None,
        description="Prometheus range to analyze, e.g. 7d"
    )
    target: AnalysisTarget = Field(
        default=AnalysisTarget.ALL,
        description="Containers to analyze: all, main or init"
    )

    @field_validator("range")
    @classmethod
    def validate_range(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not TIME_RANGE_PATTERN.match(value):
            raise ValueError(
                f"invalid time range '{value}', use Prometheus range format like '1h', '7d', '2w'"
            )
        return value


class ErrorResponse(BaseModel):
    """Standard error response format."""
    code: str
    message: str
    details: Optional[dict] = None
    trace_id: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str = "1.0.0"
    checks: Optional[dict] = None
