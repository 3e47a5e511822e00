from src.cache.coalescer import RequestCoalescer
from src.cache.tiered import TieredCache

__all__ = ["RequestCoalescer", "TieredCache"]
