from src.engine.alerts import AlertsEngine, should_fire
from src.engine.portfolio import PortfolioPricing, calculate_roi
from src.engine.trending import (
    TrendingEngine,
    calculate_trending_components,
    calculate_trending_score,
    trending_weights,
)

__all__ = [
    "AlertsEngine",
    "PortfolioPricing",
    "TrendingEngine",
    "calculate_roi",
    "calculate_trending_components",
    "calculate_trending_score",
    "should_fire",
    "trending_weights",
]
