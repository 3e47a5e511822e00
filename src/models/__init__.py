"""
Models package — export all SQLAlchemy models.
"""

from src.models.base import Base
from src.models.card import Card, CardSet
from src.models.notification import Notification
from src.models.population_report import PopulationReport
from src.models.price_alert import PriceAlert
from src.models.price_cache import PriceCache
from src.models.price_history import PriceHistory
from src.models.search_analytics import SearchAnalytics
from src.models.trending_score import TrendingScore

__all__ = [
    "Base",
    "Card",
    "CardSet",
    "Notification",
    "PopulationReport",
    "PriceAlert",
    "PriceCache",
    "PriceHistory",
    "SearchAnalytics",
    "TrendingScore",
]
