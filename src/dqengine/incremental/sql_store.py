"""State store backed by a relational database through async SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from dqengine.core.config import get_settings
from dqengine.core.errors import StoreError
from dqengine.core.logging import get_logger, increment_store_read, increment_store_write
from dqengine.incremental.db_models import AnalyzerStateRecord, init_database
from dqengine.incremental.state_store import StateSnapshot, StateStore

logger = get_logger(__name__)


class SQLStateStore(StateStore):
    """Snapshots stored as JSON rows of the ``analyzer_states`` table.

    Usage:
        engine = create_async_engine("sqlite+aiosqlite:///state.db")
        store = SQLStateStore(engine)
        await store.initialize()
    """

    def __init__(self, engine: AsyncEngine):
        super().__init__()
        self.engine = engine
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @classmethod
    def from_settings(cls) -> SQLStateStore:
        return cls(create_async_engine(get_settings().state_database_url, echo=False))

    async def initialize(self) -> None:
        try:
            await init_database(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to initialize state tables: {e}") from e

    async def save_state(self, key: str, snapshot: StateSnapshot) -> None:
        try:
            async with self._session_factory() as session:
                record = await session.get(AnalyzerStateRecord, key)
                if record is None:
                    record = AnalyzerStateRecord(partition_key=key)
                    session.add(record)
                record.states = snapshot.states
                record.state_metadata = snapshot.metadata
                record.updated_at = datetime.now(UTC)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("state_save_failed", key=key, error=str(e))
            raise StoreError(f"Failed to save state {key}: {e}", partition_key=key) from e
        increment_store_write()

    async def load_state(self, key: str) -> StateSnapshot | None:
        try:
            async with self._session_factory() as session:
                record = await session.get(AnalyzerStateRecord, key)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load state {key}: {e}", partition_key=key) from e
        increment_store_read()
        if record is None:
            return None
        return StateSnapshot(states=record.states, metadata=record.state_metadata or {})

    async def list_partitions(self, prefix: str = "") -> list[str]:
        stmt = select(AnalyzerStateRecord.partition_key).order_by(AnalyzerStateRecord.partition_key)
        if prefix:
            stmt = stmt.where(AnalyzerStateRecord.partition_key.startswith(prefix, autoescape=True))
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list partitions: {e}") from e

    async def delete_state(self, key: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(AnalyzerStateRecord).where(AnalyzerStateRecord.partition_key == key)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete state {key}: {e}", partition_key=key) from e
