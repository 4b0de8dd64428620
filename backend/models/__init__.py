from models.market_event import MarketEventRecord
from models.engine_snapshot import EngineSnapshot

__all__ = [
    "MarketEventRecord",
    "EngineSnapshot",
]
