"""
Core package for Sculptor.

Contains the recommender, its collaborators, and data models.
"""

from sculptor.core.recommender import Recommender, RecommenderSettings
from sculptor.core.schemas import AllRecommendations, NamedRecommendation, Recommendation

__all__ = [
    "Recommender",
    "RecommenderSettings",
    "AllRecommendations",
    "NamedRecommendation",
    "Recommendation",
]
