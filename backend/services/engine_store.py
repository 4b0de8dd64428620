"""
Per-game engine cache and the database side of the snapshot boundary.

Engines are held in a bounded LRU cache keyed by game id. A cache miss rebuilds
the engine from the game's latest snapshot plus its persisted events.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from cachetools import LRUCache
from sqlalchemy.orm import Session

from config import get_settings
from models.engine_snapshot import EngineSnapshot
from models.market_event import MarketEventRecord
from services.engine_config import EngineConfig
from services.market_engine import MarketEngine
from services.market_events import MarketEvent
from services.random_streams import mix_seed, stable_salt

logger = logging.getLogger(__name__)

settings = get_settings()

# ── Engine cache: game id → MarketEngine ──
_engines: LRUCache = LRUCache(maxsize=settings.max_cached_engines)


def new_engine(game_id: str) -> MarketEngine:
    """Fresh engine whose random streams are specific to the game."""
    return MarketEngine(
        EngineConfig(cutover_year=settings.regime_cutover_year),
        seed=mix_seed(settings.engine_seed, stable_salt(game_id)),
    )


def latest_snapshot(db: Session, game_id: str) -> Optional[EngineSnapshot]:
    return db.query(EngineSnapshot).filter(
        EngineSnapshot.game_id == game_id
    ).order_by(EngineSnapshot.created_at.desc(), EngineSnapshot.simulation_time.desc()).first()


def get_engine(db: Session, game_id: str) -> MarketEngine:
    engine = _engines.get(game_id)
    if engine is not None:
        return engine

    engine = new_engine(game_id)
    snapshot = latest_snapshot(db, game_id)
    if snapshot:
        engine.load_snapshot(snapshot.data)

    # Event rows are authoritative: a deactivation saved after the snapshot wins
    records = db.query(MarketEventRecord).filter(MarketEventRecord.game_id == game_id).all()
    for record in records:
        event = engine.add_event(MarketEvent.from_dict(record.event_data))
        if not event.is_active:
            engine.aggregator.forget_event(event.id)

    _engines[game_id] = engine
    logger.info("Loaded engine for game %s (%d events)", game_id, len(engine.events))
    return engine


def drop_engine(game_id: str) -> None:
    _engines.pop(game_id, None)


def clear_engines() -> None:
    _engines.clear()


def save_events(db: Session, game_id: str, events: Iterable[MarketEvent]) -> list[MarketEventRecord]:
    """Insert or update event rows. The caller commits."""
    records = []
    for event in events:
        record = MarketEventRecord(
            game_id=game_id,
            id=event.id,
            name=event.name,
            type=event.type.value,
            severity=event.severity.value,
            activated_at=event.activated_at,
            deactivated_at=event.deactivated_at,
            status=event.status.value,
            event_data=event.to_dict(),
        )
        records.append(db.merge(record))
    return records


def save_snapshot(db: Session, game_id: str, engine: MarketEngine, simulation_time: datetime) -> EngineSnapshot:
    snapshot = EngineSnapshot(
        game_id=game_id,
        simulation_time=simulation_time,
        data=engine.to_snapshot(),
    )
    db.add(snapshot)
    return snapshot


def event_records(db: Session, game_id: str, status: Optional[str] = None, limit: Optional[int] = None) -> list[MarketEventRecord]:
    query = db.query(MarketEventRecord).filter(MarketEventRecord.game_id == game_id)
    if status:
        query = query.filter(MarketEventRecord.status == status)
    query = query.order_by(MarketEventRecord.activated_at.desc())
    if limit:
        query = query.limit(limit)
    return query.all()
