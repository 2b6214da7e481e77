"""
Memory Agent Conversation Store
================================
Durable, append-only log of conversation turns, one row per Turn.

Backed by SQLite through SQLAlchemy's asyncio extension (aiosqlite driver),
so writes and reads never block the event loop and independent sessions can
write concurrently. Rows are keyed by (user_id, session_id); there are no
cross-session transactions.

Schema creation is idempotent and runs on every session open.
"""

from contextlib import asynccontextmanager
from datetime import timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from memagent.memory.types import Role, Turn
from memagent.utils.config import load_config
from memagent.utils.logger import get_logger

logger = get_logger("memory.store")

Base = declarative_base()


class TurnRecord(Base):
    """Row form of a Turn. `seq` breaks ties between equal timestamps."""

    __tablename__ = "conversations"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    turn_id = Column(String(64), nullable=False, unique=True)
    user_id = Column(String(255), nullable=False)
    session_id = Column(String(255), nullable=False)
    timestamp = Column(DateTime, nullable=False)  # naive UTC
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)

    __table_args__ = (
        Index("idx_conversations_session", "user_id", "session_id", "timestamp"),
    )

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnRecord":
        timestamp = turn.timestamp
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
        return cls(
            turn_id=turn.id,
            user_id=turn.user_id,
            session_id=turn.session_id,
            timestamp=timestamp,
            role=turn.role.value,
            content=turn.content,
        )

    def to_turn(self) -> Turn:
        return Turn(
            id=self.turn_id,
            user_id=self.user_id,
            session_id=self.session_id,
            timestamp=self.timestamp.replace(tzinfo=timezone.utc),
            role=Role(self.role),
            content=self.content,
        )


class ConversationStore:
    """
    Async SQLite store for conversation turns.

    Core operations:
    - initialize: create tables/indexes if missing (safe to repeat)
    - append: persist one Turn, returns it once the commit is acknowledged
    - query_recent: newest-first turns for one (user_id, session_id)
    """

    def __init__(self, config: dict = None):
        config = config or load_config()
        store_cfg = config["store"]

        self.database_url: str = store_cfg["database_url"]
        self.engine = create_async_engine(
            self.database_url,
            echo=False,
            connect_args={"timeout": store_cfg.get("busy_timeout", 30)},
        )
        self.async_session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

        logger.info(f"ConversationStore: {self.database_url}")

    async def initialize(self) -> None:
        """Create the schema. Idempotent."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self):
        """Get an async session that commits on success and rolls back on error."""
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def append(self, turn: Turn) -> Turn:
        """
        Persist a turn.

        Args:
            turn: The Turn to store.

        Returns:
            The same Turn, after the write has been committed.
        """
        async with self.session() as session:
            session.add(TurnRecord.from_turn(turn))

        logger.debug(
            f"Stored {turn.role.value} turn {turn.id} "
            f"({turn.user_id}/{turn.session_id}, {len(turn.content)} chars)"
        )
        return turn

    async def query_recent(self, user_id: str, session_id: str, limit: int) -> list:
        """
        Fetch the most recent turns of one session.

        Returns:
            Up to `limit` Turns ordered by timestamp descending (newest first).
        """
        if limit <= 0:
            return []

        stmt = (
            select(TurnRecord)
            .where(TurnRecord.user_id == user_id, TurnRecord.session_id == session_id)
            .order_by(TurnRecord.timestamp.desc(), TurnRecord.seq.desc())
            .limit(limit)
        )
        async with self.session() as session:
            rows = (await session.execute(stmt)).scalars().all()

        return [row.to_turn() for row in rows]

    async def count(self, user_id: str = None) -> int:
        """Number of stored turns, optionally for one user."""
        stmt = select(func.count(TurnRecord.seq))
        if user_id is not None:
            stmt = stmt.where(TurnRecord.user_id == user_id)
        async with self.session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def close(self) -> None:
        """Close the database connection pool."""
        await self.engine.dispose()
