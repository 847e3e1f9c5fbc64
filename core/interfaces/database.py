from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from core.context import CallContext
from core.errors import NoRows
from core.models.client import ClientConfig, StatsSnapshot


class BaseRows(ABC):
    """
    Abstract forward-only result cursor

    Contract:
    - columns() is available before the first next()
    - next() returns False after exhaustion or a terminal error
    - err() reports the terminal error (None on normal exhaustion)
    - close() is idempotent and returns the connection to the pool

    Implementations:
    - ClickHouseRows (clickhouse-driver)
    """

    @abstractmethod
    def columns(self) -> list[str]:
        """Column names in result order"""

    @abstractmethod
    def column_types(self) -> list[str]:
        """ClickHouse type names in result order"""

    @abstractmethod
    async def next(self) -> bool:
        """
        Advance to the next row

        Returns:
            True if a row is available for scan(), False when the stream ended
        """

    @abstractmethod
    def scan(self, *destinations: Any) -> tuple[Any, ...]:
        """
        Read the current row into typed destinations

        Args:
            *destinations: One destination per column (Int8, UInt64, Nullable(UInt64), str, ...)

        Returns:
            Tuple of converted values

        Raises:
            ArityMismatch: If the destination count differs from the column count
            TypeMismatch: If a value does not fit its destination (the cursor stays usable)
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the cursor (idempotent)"""

    @abstractmethod
    def err(self) -> Exception | None:
        """Terminal error of the stream, if any"""

    def __aiter__(self):
        return self

    async def __anext__(self) -> "BaseRows":
        if await self.next():
            return self
        raise StopAsyncIteration

    async def __aenter__(self) -> "BaseRows":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class SingleRow:
    """
    Deferred single-row query

    The query runs when scan() is awaited; the cursor is always closed.
    """

    def __init__(self, fetch: Callable[[], Awaitable[BaseRows]]):
        self._fetch = fetch

    async def scan(self, *destinations: Any) -> tuple[Any, ...]:
        """
        Run the query and scan its first row

        Raises:
            NoRows: If the result is empty
        """
        rows = await self._fetch()
        try:
            if not await rows.next():
                err = rows.err()
                if err is not None:
                    raise err
                raise NoRows("sql: no rows in result set")
            return rows.scan(*destinations)
        finally:
            await rows.close()


class BaseClickHouseClient(ABC):
    """
    Abstract interface for ClickHouse clients

    Every coroutine honors the CallContext: an already-expired context fails
    with the DEADLINE_EXCEEDED / CANCELLED sentinel before any I/O.

    Implementations:
    - ClickHouseClient (clickhouse-driver, native TCP protocol)
    """

    @abstractmethod
    async def ping(self, ctx: CallContext) -> None:
        """Round-trip to the server"""

    @abstractmethod
    async def exec(self, ctx: CallContext, sql: str, *args: Any) -> None:
        """
        Execute a statement that returns no rows

        Args:
            ctx: Call context
            sql: SQL text with optional $N placeholders
            *args: Positional arguments for the placeholders
        """

    @abstractmethod
    async def query(self, ctx: CallContext, sql: str, *args: Any) -> BaseRows:
        """
        Run a query and stream its rows

        Args:
            ctx: Call context
            sql: SQL text with optional $N placeholders
            *args: Positional arguments for the placeholders

        Returns:
            Open row cursor; the caller must close it
        """

    def query_row(self, ctx: CallContext, sql: str, *args: Any) -> SingleRow:
        """Query expected to return exactly one row (scan raises NoRows otherwise)"""
        return SingleRow(lambda: self.query(ctx, sql, *args))

    @abstractmethod
    async def close(self) -> None:
        """Close all pooled connections; later operations fail"""

    @abstractmethod
    def stats(self) -> StatsSnapshot:
        """Connection pool counters (observable after close)"""

    @abstractmethod
    def server_version(self) -> str:
        """Server version cached at open time"""

    async def __aenter__(self) -> "BaseClickHouseClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


Opener = Callable[[ClientConfig], Awaitable[BaseClickHouseClient]]
