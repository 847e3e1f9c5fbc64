"""
ClickHouse implementation of the client contract

Reference client on top of clickhouse-driver (native TCP protocol):
- Connection pool (asyncio.Queue of driver clients)
- Open-time and reconnect failover across the configured addresses
- Blocking driver calls run in worker threads, bounded by the CallContext
- Streaming row cursor with typed scanning and progress delivery
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from clickhouse_driver import Client
from clickhouse_driver import errors as driver_errors

from core.binding import bind
from core.column_types import ColumnType, parse_type, resolve_destination
from core.context import CallContext, bounded
from core.errors import (
    ArityMismatch,
    Cancelled,
    ClientError,
    ClosedError,
    ConnectError,
    DeadlineExceeded,
    InvalidArgument,
    ProtocolError,
    ServerError,
    TypeMismatch,
)
from core.interfaces.database import BaseClickHouseClient, BaseRows
from core.models.client import ClientConfig, Progress, StatsSnapshot, build_config

logger = logging.getLogger(__name__)

_END = object()

_ERROR_NAMES: dict[int, str] = {
    code: name
    for name, code in vars(driver_errors.ErrorCodes).items()
    if name.isupper() and isinstance(code, int)
}


def translate_error(e: BaseException) -> ClientError:
    """
    Map a clickhouse-driver (or socket) exception onto the client error kinds

    Args:
        e: Exception raised by the driver

    Returns:
        ClientError subclass instance (the input itself if already a ClientError)
    """
    if isinstance(e, ClientError):
        return e
    if isinstance(e, driver_errors.ServerException):
        name = _ERROR_NAMES.get(e.code, "UNKNOWN")
        return ServerError(code=e.code, name=name, message=e.message)
    if isinstance(e, driver_errors.TypeMismatchError):
        return TypeMismatch(str(e))
    if isinstance(
        e,
        driver_errors.UnexpectedPacketFromServerError | driver_errors.UnknownPacketFromServerError,
    ):
        return ProtocolError(str(e))
    if isinstance(e, driver_errors.NetworkError | driver_errors.SocketTimeoutError):
        return ConnectError(str(e))
    if isinstance(e, OSError | EOFError):
        return ConnectError(f"{type(e).__name__}: {e}")
    return ClientError(str(e))


def _column_type(name: str) -> ColumnType:
    try:
        return parse_type(name)
    except InvalidArgument:
        # Types without value checks (Map, Tuple, ...) still need a name for errors
        return ColumnType(name=name, base=name.split("(", 1)[0])


def _read_progress(conn: Client, started: float) -> Progress | None:
    last_query = getattr(conn, "last_query", None)
    progress = getattr(last_query, "progress", None)
    if progress is None:
        return None
    return Progress(
        rows=progress.rows,
        bytes=progress.bytes,
        total_rows=progress.total_rows,
        written_rows=progress.written_rows,
        written_bytes=progress.written_bytes,
        elapsed=time.monotonic() - started,
    )


def _query_kwargs(ctx: CallContext) -> dict[str, Any]:
    """Driver keyword arguments carried by the context"""
    kwargs: dict[str, Any] = {}
    if ctx.settings:
        kwargs["settings"] = dict(ctx.settings)
    if ctx.external_tables:
        kwargs["external_tables"] = [table.to_driver() for table in ctx.external_tables]
    if ctx.query_id:
        kwargs["query_id"] = ctx.query_id
    return kwargs


class ClickHouseRows(BaseRows):
    """
    Streaming cursor over one query

    Holds a pooled connection until the stream ends or close() is called.
    """

    def __init__(self, client: "ClickHouseClient", conn: Client, ctx: CallContext):
        self._client = client
        self._conn = conn
        self._ctx = ctx
        self._iter = None
        self._names: list[str] = []
        self._types: list[ColumnType] = []
        self._current: tuple | None = None
        self._err: Exception | None = None
        self._done = False
        self._closed = False
        self._started = time.monotonic()
        self._last_progress: tuple | None = None

    async def _start(self, query: str, params: dict | None) -> None:
        """Send the query and read column metadata (first block)"""
        kwargs = _query_kwargs(self._ctx)

        def start():
            it = iter(
                self._conn.execute_iter(query, params, with_column_types=True, **kwargs)
            )
            return it, next(it, _END)

        try:
            self._iter, header = await self._client._call(self._ctx, self._conn, start)
        except ClientError as e:
            self._release(poisoned=_is_poisoning(e), discard=True)
            raise

        if header is not _END:
            self._names = [name for name, _ in header]
            self._types = [_column_type(type_name) for _, type_name in header]
        self._deliver_progress()

    def columns(self) -> list[str]:
        return list(self._names)

    def column_types(self) -> list[str]:
        return [t.name for t in self._types]

    async def next(self) -> bool:
        self._current = None
        if self._done:
            return False

        try:
            row = await self._client._call(self._ctx, self._conn, next, self._iter, _END)
        except ClientError as e:
            self._err = e
            if not isinstance(e, DeadlineExceeded | Cancelled):
                logger.error(f"✗ ClickHouse stream error: {e}")
            self._release(poisoned=_is_poisoning(e), discard=True)
            return False

        self._deliver_progress()

        if row is _END:
            self._release()
            return False

        self._current = row
        return True

    def scan(self, *destinations: Any) -> tuple[Any, ...]:
        if self._current is None:
            if self._closed:
                raise ClosedError("clickhouse: rows are closed")
            raise InvalidArgument("scan called without a successful next()")

        if len(destinations) != len(self._names):
            raise ArityMismatch(
                f"expected {len(self._names)} destination arguments in scan, "
                f"not {len(destinations)}"
            )

        return tuple(
            resolve_destination(dest).convert(value, column_type)
            for dest, value, column_type in zip(destinations, self._current, self._types)
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._current = None
        # Unread packets of an abandoned stream make the connection unusable
        self._release(discard=True)

    def err(self) -> Exception | None:
        return self._err

    def _release(self, poisoned: bool = False, discard: bool = False) -> None:
        if self._done:
            return
        self._done = True
        if discard and not poisoned:
            self._conn.disconnect()
        self._client._release(self._conn, poisoned=poisoned)

    def _deliver_progress(self) -> None:
        handler = self._ctx.progress
        if handler is None:
            return
        progress = _read_progress(self._conn, self._started)
        if progress is None:
            return
        counters = (
            progress.rows,
            progress.bytes,
            progress.total_rows,
            progress.written_rows,
            progress.written_bytes,
        )
        if counters != self._last_progress:
            self._last_progress = counters
            handler(progress)


def _is_poisoning(e: Exception) -> bool:
    """Errors after which the connection's state is unknown"""
    return isinstance(e, DeadlineExceeded | Cancelled | ConnectError | ProtocolError)


class ClickHouseClient(BaseClickHouseClient):
    """
    ClickHouse implementation

    Features:
    - Native TCP protocol with LZ4 block compression
    - Failover list (first reachable address wins)
    - Pooled connections (max_open_conns), poisoned connections replaced
    - Context-bounded operations (deadline / cancellation)
    """

    def __init__(self, config: ClientConfig):
        self.config = config
        self._pool: asyncio.Queue | None = None
        self._open = 0
        self._in_use = 0
        self._closed = False
        self._server_version = ""

    def _trace(self, message: str) -> None:
        """Per-query detail: INFO for debug clients, DEBUG otherwise"""
        logger.log(logging.INFO if self.config.debug else logging.DEBUG, message)

    def _new_connection(self) -> Client:
        """Driver client for the failover list (connects lazily)"""
        host, port = self.config.hosts[0]
        kwargs: dict[str, Any] = {
            "host": host,
            "port": port,
            "database": self.config.auth.database,
            "user": self.config.auth.username,
            "password": self.config.auth.password,
            "connect_timeout": self.config.dial_timeout,
            "client_name": "clickhouse-conformance",
        }
        if len(self.config.addresses) > 1:
            kwargs["alt_hosts"] = ",".join(self.config.addresses[1:])
        if self.config.compression is not None:
            kwargs["compression"] = self.config.compression.method.value
        if self.config.settings:
            kwargs["settings"] = dict(self.config.settings)
        return Client(**kwargs)

    async def connect(self) -> None:
        """Establish the first connection (with failover) and fill the pool"""
        first = self._new_connection()
        try:
            await asyncio.to_thread(first.connection.force_connect)
        except Exception as e:
            logger.error(f"✗ Failed to connect to ClickHouse {list(self.config.addresses)}: {e}")
            raise translate_error(e) from e

        info = first.connection.server_info
        self._server_version = f"{info.version_major}.{info.version_minor}.{info.version_patch}"

        pool_size = self.config.max_open_conns
        self._pool = asyncio.Queue(maxsize=pool_size)
        self._pool.put_nowait(first)
        for _ in range(pool_size - 1):
            self._pool.put_nowait(self._new_connection())
        self._open = pool_size

        logger.info(
            f"✓ Connected to ClickHouse {self._server_version} "
            f"(addresses={list(self.config.addresses)}, pool={pool_size})"
        )

    # ============================================
    # POOL
    # ============================================
    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedError("clickhouse: client is closed")
        if self._pool is None:
            raise ClosedError("clickhouse: client not connected")

    async def _acquire(self, ctx: CallContext) -> Client:
        self._ensure_open()
        conn = await bounded(ctx, self._pool.get())
        self._in_use += 1
        return conn

    def _release(self, conn: Client, poisoned: bool = False) -> None:
        self._in_use -= 1

        if self._closed:
            conn.disconnect()
            self._open -= 1
            return

        if poisoned:
            # A worker thread may still be using it; never hand it out again
            conn.disconnect()
            conn = self._new_connection()
            logger.warning("⚠️ Replaced poisoned ClickHouse connection")

        self._pool.put_nowait(conn)

    async def _call(self, ctx: CallContext, conn: Client, fn: Callable, *args: Any) -> Any:
        """Run a blocking driver call in a worker thread, bounded by ctx"""
        try:
            return await bounded(ctx, asyncio.to_thread(fn, *args))
        except (DeadlineExceeded, Cancelled):
            # Closing the socket unblocks the worker thread
            conn.disconnect()
            raise
        except ClientError:
            raise
        except Exception as e:
            raise translate_error(e) from e

    async def _run(self, ctx: CallContext, fn: Callable[[Client], Any]) -> Any:
        """Check out a connection, run fn(conn) in a worker thread, return the connection"""
        conn = await self._acquire(ctx)
        poisoned = False
        try:
            return await self._call(ctx, conn, fn, conn)
        except ClientError as e:
            poisoned = _is_poisoning(e)
            raise
        finally:
            self._release(conn, poisoned=poisoned)

    # ============================================
    # OPERATIONS
    # ============================================
    async def ping(self, ctx: CallContext) -> None:
        """Round-trip to the server (reconnects through the failover list if needed)"""

        def ping(conn: Client) -> None:
            conn.connection.force_connect()
            if not conn.connection.ping():
                raise ConnectError("clickhouse: ping failed")

        await self._run(ctx, ping)

    async def exec(self, ctx: CallContext, sql: str, *args: Any) -> None:
        """
        Execute a statement that returns no rows

        Args:
            ctx: Call context (settings, external tables, progress)
            sql: SQL text with optional $N placeholders
            *args: Placeholder arguments
        """
        self._ensure_open()
        query, params = bind(sql, args)
        kwargs = _query_kwargs(ctx)
        started = time.monotonic()
        want_progress = ctx.progress is not None

        def execute(conn: Client) -> Progress | None:
            conn.execute(query, params, **kwargs)
            return _read_progress(conn, started) if want_progress else None

        try:
            progress = await self._run(ctx, execute)
        except (DeadlineExceeded, Cancelled):
            raise
        except ClientError as e:
            logger.error(f"✗ ClickHouse exec error: {e}")
            raise

        if ctx.progress is not None and progress is not None:
            ctx.progress(progress)
        self._trace(f"Executed in {time.monotonic() - started:.3f}s: {sql.strip()[:80]}")

    async def query(self, ctx: CallContext, sql: str, *args: Any) -> ClickHouseRows:
        """
        Run a query and stream its rows

        Returns:
            ClickHouseRows holding a pooled connection until closed or exhausted
        """
        self._ensure_open()
        query, params = bind(sql, args)
        conn = await self._acquire(ctx)

        rows = ClickHouseRows(self, conn, ctx)
        try:
            await rows._start(query, params)
        except (DeadlineExceeded, Cancelled):
            raise
        except ClientError as e:
            logger.error(f"✗ ClickHouse query error: {e}")
            raise

        self._trace(f"Query started, columns={rows.columns()}")
        return rows

    async def close(self) -> None:
        """Close all pooled connections (idempotent)"""
        if self._closed:
            return
        self._closed = True

        if self._pool is not None:
            while not self._pool.empty():
                conn = self._pool.get_nowait()
                conn.disconnect()
                self._open -= 1

        logger.info("✓ ClickHouse connection pool closed")

    def stats(self) -> StatsSnapshot:
        return StatsSnapshot(
            open_connections=self._open,
            idle=self._pool.qsize() if self._pool is not None else 0,
            in_use=self._in_use,
            max_open_conns=self.config.max_open_conns,
        )

    def server_version(self) -> str:
        return self._server_version


async def open_client(config: ClientConfig | dict[str, Any]) -> ClickHouseClient:
    """
    Open a pooled client

    Args:
        config: ClientConfig (or its fields as a dict)

    Returns:
        Connected ClickHouseClient

    Raises:
        ConfigurationError: Invalid configuration (no network I/O attempted)
        ConnectError: No configured address accepted a connection

    Example:
        >>> client = await open_client(build_config(addresses=["127.0.0.1:9000"]))
        >>> await client.ping(CallContext.background())
        >>> await client.close()
    """
    if not isinstance(config, ClientConfig):
        config = build_config(**config)

    client = ClickHouseClient(config)
    await client.connect()
    return client
