"""Trending score computation and insights."""

from .service import TrendingService, get_trending_service

__all__ = ["TrendingService", "get_trending_service"]
