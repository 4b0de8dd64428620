import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Index
from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class EngineSnapshot(Base):
    """Engine state saved by a game: active events, macro state, per-instrument volatility."""
    __tablename__ = "engine_snapshots"
    __table_args__ = (
        Index('ix_snapshots_game_created', 'game_id', 'created_at'),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    game_id = Column(String(64), nullable=False, index=True)
    simulation_time = Column(DateTime, nullable=False)
    data = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
