from datetime import datetime
from sqlalchemy import Column, String, DateTime, JSON, Index
from database import Base


class MarketEventRecord(Base):
    """Persisted market event; `event_data` holds the full serialized event."""
    __tablename__ = "market_events"
    __table_args__ = (
        Index('ix_market_events_game_status', 'game_id', 'status'),
    )

    # Event ids are unique within a game only
    game_id = Column(String(64), primary_key=True)
    id = Column(String(120), primary_key=True)
    name = Column(String(200), nullable=False)
    type = Column(String(50), nullable=False)  # market_crash, sector_crash, correction
    severity = Column(String(50), nullable=False)

    activated_at = Column(DateTime, nullable=False, index=True)
    deactivated_at = Column(DateTime, nullable=True)

    # Status: active, deactivated
    status = Column(String(50), default="active", index=True)

    event_data = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
