"""Shared counter store.

A small key/value service with the primitives the rate limiter and the chain
sync monitor need: atomic increment, set with expiry, conditional set,
compare-and-delete, monotonic set, hashes, sorted sets and an all-or-nothing
pipeline. Every call runs in its own database transaction, so several process
instances pointed at the same database share one consistent view.

Scalar primitives are single SQL statements (upserts with ON CONFLICT, or
conditional UPDATE/DELETE), so concurrent callers never overwrite each other.
Expired rows are treated as absent and replaced in place.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import BigInteger, Text, and_, case, cast, delete, func, null, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ckbvault.store.models import HashEntry, KeyValue, SortedSetEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[AsyncSession], Awaitable[T]]


class StorePipeline:
    """Writes queued for a single atomic commit.

    Example:
        async with store.pipeline() as pipe:
            pipe.hset("transactions", tx_hash, payload)
            pipe.zadd("transaction_hash", {tx_hash: block_number})
    """

    def __init__(self):
        self._operations: list[Callable[[AsyncSession], Awaitable[None]]] = []

    def __len__(self) -> int:
        return len(self._operations)

    def set(self, key: str, value) -> "StorePipeline":
        async def _apply(session: AsyncSession) -> None:
            await session.merge(KeyValue(key=key, value=str(value), expires_at=None))

        self._operations.append(_apply)
        return self

    def hset(self, key: str, field: str, value: str) -> "StorePipeline":
        async def _apply(session: AsyncSession) -> None:
            await session.merge(HashEntry(key=key, field=field, value=value))

        self._operations.append(_apply)
        return self

    def zadd(self, key: str, mapping: dict[str, int]) -> "StorePipeline":
        async def _apply(session: AsyncSession) -> None:
            for member, score in mapping.items():
                await session.merge(SortedSetEntry(key=key, member=member, score=int(score)))

        self._operations.append(_apply)
        return self

    async def apply(self, session: AsyncSession) -> None:
        for operation in self._operations:
            await operation(session)


class CounterStore:
    """Key/value store over SQLAlchemy async sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the store.

        Args:
            session_factory: Factory producing sessions bound to the shared database
            clock: Time source returning UNIX seconds (injectable for tests)
        """
        self._session_factory = session_factory
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session

    async def _run(self, operation: Operation[T]) -> T:
        """Run operation in a transaction; retry once if a concurrent insert won."""
        try:
            async with self._transaction() as session:
                return await operation(session)
        except IntegrityError:
            logger.debug("Store write conflicted with a concurrent insert, retrying")
            async with self._transaction() as session:
                return await operation(session)

    @staticmethod
    def _insert(session: AsyncSession):
        """Dialect insert construct supporting ON CONFLICT upserts."""
        if session.get_bind().dialect.name == "postgresql":
            return postgresql.insert(KeyValue)
        return sqlite.insert(KeyValue)

    @staticmethod
    def _is_live(now: float):
        return or_(KeyValue.expires_at.is_(None), KeyValue.expires_at > now)

    @staticmethod
    def _is_expired(now: float):
        return and_(KeyValue.expires_at.is_not(None), KeyValue.expires_at <= now)

    def _expiry(self, seconds: Optional[float]) -> Optional[float]:
        return self._clock() + seconds if seconds else None

    # Scalars
    async def get(self, key: str) -> Optional[str]:
        """Get a scalar value, or None if absent or expired."""

        async def _op(session: AsyncSession) -> Optional[str]:
            stmt = select(KeyValue.value).where(
                KeyValue.key == key, self._is_live(self._clock())
            )
            return (await session.execute(stmt)).scalar_one_or_none()

        return await self._run(_op)

    async def set(
        self, key: str, value, ex: Optional[float] = None, nx: bool = False
    ) -> bool:
        """Set a scalar value.

        A single upsert; with nx the conflicting row is only replaced when it
        has expired.

        Args:
            key: Key to write
            value: Value (stored as its string form)
            ex: Expiry in seconds (None = never expires)
            nx: Only set if the key does not already exist

        Returns:
            False if nx was requested and the key exists, True otherwise
        """

        async def _op(session: AsyncSession) -> bool:
            now = self._clock()
            stmt = self._insert(session).values(
                key=key, value=str(value), expires_at=self._expiry(ex)
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[KeyValue.key],
                set_={
                    "value": stmt.excluded.value,
                    "expires_at": stmt.excluded.expires_at,
                    "updated_at": func.now(),
                },
                where=self._is_expired(now) if nx else None,
            ).returning(KeyValue.key)
            return (await session.execute(stmt)).first() is not None

        return await self._run(_op)

    async def incr(self, key: str, amount: int = 1) -> int:
        """Atomically add amount to an integer value (absent counts as 0).

        An existing expiry is preserved; an expired value restarts from 0.
        """

        async def _op(session: AsyncSession) -> int:
            expired = self._is_expired(self._clock())
            stmt = self._insert(session).values(key=key, value=str(amount), expires_at=None)
            stmt = stmt.on_conflict_do_update(
                index_elements=[KeyValue.key],
                set_={
                    "value": case(
                        (expired, stmt.excluded.value),
                        else_=cast(cast(KeyValue.value, BigInteger) + amount, Text),
                    ),
                    "expires_at": case((expired, null()), else_=KeyValue.expires_at),
                    "updated_at": func.now(),
                },
            ).returning(KeyValue.value)
            return int((await session.execute(stmt)).scalar_one())

        return await self._run(_op)

    async def expire(self, key: str, seconds: float) -> bool:
        """Set a key's time-to-live. Returns False if the key does not exist."""

        async def _op(session: AsyncSession) -> bool:
            stmt = (
                update(KeyValue)
                .where(KeyValue.key == key, self._is_live(self._clock()))
                .values(expires_at=self._expiry(seconds))
                .execution_options(synchronize_session=False)
            )
            return (await session.execute(stmt)).rowcount > 0

        return await self._run(_op)

    async def ttl(self, key: str) -> Optional[float]:
        """Seconds until a key expires, or None if absent or without expiry."""

        async def _op(session: AsyncSession) -> Optional[float]:
            now = self._clock()
            stmt = select(KeyValue.expires_at).where(KeyValue.key == key, self._is_live(now))
            expires_at = (await session.execute(stmt)).scalar_one_or_none()
            return expires_at - now if expires_at is not None else None

        return await self._run(_op)

    async def _delete_where(self, key: str, *criteria) -> bool:
        async def _op(session: AsyncSession) -> bool:
            stmt = (
                delete(KeyValue)
                .where(KeyValue.key == key, self._is_live(self._clock()), *criteria)
                .execution_options(synchronize_session=False)
            )
            return (await session.execute(stmt)).rowcount > 0

        return await self._run(_op)

    async def delete(self, key: str) -> bool:
        """Delete a scalar key. Returns True if a live key was removed."""
        return await self._delete_where(key)

    async def delete_if_equal(self, key: str, value: str) -> bool:
        """Delete a key only while it still holds value."""
        return await self._delete_where(key, KeyValue.value == value)

    async def set_if_greater(self, key: str, value: int) -> bool:
        """Store an integer only if it is greater than the current one."""

        async def _op(session: AsyncSession) -> bool:
            now = self._clock()
            stmt = self._insert(session).values(key=key, value=str(value), expires_at=None)
            stmt = stmt.on_conflict_do_update(
                index_elements=[KeyValue.key],
                set_={
                    "value": stmt.excluded.value,
                    "expires_at": null(),
                    "updated_at": func.now(),
                },
                where=or_(self._is_expired(now), cast(KeyValue.value, BigInteger) < value),
            ).returning(KeyValue.key)
            return (await session.execute(stmt)).first() is not None

        return await self._run(_op)

    # Hashes
    async def hset(self, key: str, field: str, value: str) -> None:
        async def _op(session: AsyncSession) -> None:
            await session.merge(HashEntry(key=key, field=field, value=value))

        await self._run(_op)

    async def hget(self, key: str, field: str) -> Optional[str]:
        async def _op(session: AsyncSession) -> Optional[str]:
            entry = await session.get(HashEntry, (key, field))
            return entry.value if entry else None

        return await self._run(_op)

    async def hgetall(self, key: str) -> dict[str, str]:
        async def _op(session: AsyncSession) -> dict[str, str]:
            result = await session.execute(select(HashEntry).where(HashEntry.key == key))
            return {entry.field: entry.value for entry in result.scalars().all()}

        return await self._run(_op)

    # Sorted sets
    async def zadd(self, key: str, mapping: dict[str, int]) -> None:
        async def _op(session: AsyncSession) -> None:
            for member, score in mapping.items():
                await session.merge(SortedSetEntry(key=key, member=member, score=int(score)))

        await self._run(_op)

    async def zrange(
        self,
        key: str,
        offset: int = 0,
        limit: Optional[int] = None,
        desc: bool = False,
    ) -> list[str]:
        """Members of a sorted set ordered by score (ties by member)."""

        async def _op(session: AsyncSession) -> list[str]:
            order = (
                (SortedSetEntry.score.desc(), SortedSetEntry.member.desc())
                if desc
                else (SortedSetEntry.score, SortedSetEntry.member)
            )
            stmt = (
                select(SortedSetEntry.member)
                .where(SortedSetEntry.key == key)
                .order_by(*order)
                .offset(offset)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

        return await self._run(_op)

    async def zcard(self, key: str) -> int:
        async def _op(session: AsyncSession) -> int:
            stmt = select(func.count()).select_from(SortedSetEntry).where(SortedSetEntry.key == key)
            return (await session.execute(stmt)).scalar_one()

        return await self._run(_op)

    # Pipelines
    @asynccontextmanager
    async def pipeline(self) -> AsyncGenerator[StorePipeline, None]:
        """Queue writes and commit them together when the block exits.

        Nothing is written if the block raises.
        """
        pipe = StorePipeline()
        yield pipe
        if len(pipe):
            await self._run(pipe.apply)

    async def flush_all(self) -> None:
        """Remove every entry (testing and maintenance only)."""

        async def _op(session: AsyncSession) -> None:
            await session.execute(delete(KeyValue))
            await session.execute(delete(HashEntry))
            await session.execute(delete(SortedSetEntry))

        await self._run(_op)
