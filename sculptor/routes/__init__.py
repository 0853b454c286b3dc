"""
Routes package for Sculptor.

Contains Flask blueprints for API endpoints.
"""

from sculptor.routes.health import health_bp
from sculptor.routes.recommendations import recommendations_bp

__all__ = [
    "health_bp",
    "recommendations_bp",
]
