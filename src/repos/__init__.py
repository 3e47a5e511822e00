"""
Typed repositories, one per table group. Each wraps an AsyncSession; the
caller owns the transaction and commits.
"""

from src.repos.alert_repo import AlertRepo, NotificationRepo
from src.repos.card_repo import CardRepo
from src.repos.population_repo import PopulationRepo
from src.repos.price_repo import PriceCacheRepo, PriceHistoryRepo
from src.repos.set_repo import SetRepo
from src.repos.trending_repo import SearchAnalyticsRepo, TrendingRepo

__all__ = [
    "AlertRepo",
    "CardRepo",
    "NotificationRepo",
    "PopulationRepo",
    "PriceCacheRepo",
    "PriceHistoryRepo",
    "SearchAnalyticsRepo",
    "SetRepo",
    "TrendingRepo",
]
