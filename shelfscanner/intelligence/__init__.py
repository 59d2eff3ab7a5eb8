"""
Intelligence Module for Shelf Scanner

Reading recommendations built from a scanned shelf.
"""

from shelfscanner.intelligence.recommender import (
    BookRecommender,
    RecommendationCandidate,
)

__all__ = [
    "BookRecommender",
    "RecommendationCandidate",
]
