"""
Unit tests for ClickHouse connection pooling

Tests:
- Connection pool creation and failover arguments
- Open failure translation
- Poisoned connection replacement (deadline during a call)
- Close semantics (drain, ClosedError, stats/version afterwards)
- Error translation for server exceptions
"""

import asyncio
import logging
import time
from unittest.mock import MagicMock, patch

import pytest
from clickhouse_driver import errors as driver_errors

from core.context import CallContext, decorate, with_settings
from core.errors import (
    CANCELLED,
    DEADLINE_EXCEEDED,
    BindError,
    ClosedError,
    ConnectError,
    ServerError,
)
from core.models.client import build_config
from providers.opensource.clickhouse import ClickHouseClient, open_client, translate_error


def make_conn() -> MagicMock:
    conn = MagicMock()
    conn.connection.server_info.version_major = 24
    conn.connection.server_info.version_minor = 3
    conn.connection.server_info.version_patch = 1
    conn.connection.ping.return_value = True
    conn.execute.return_value = []
    return conn


def make_config(**overrides):
    fields = {"addresses": ["127.0.0.1:9000"], "max_open_conns": 3}
    fields.update(overrides)
    return build_config(**fields)


@pytest.mark.unit
async def test_connection_pool_creation():
    """Verify connection pool initialized with max_open_conns connections"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()

        client = await open_client(make_config(max_open_conns=3))

        # Verify 3 connections created
        assert mock_client_class.call_count == 3
        assert client._pool.qsize() == 3
        assert client.server_version() == "24.3.1"

        stats = client.stats()
        assert stats.open_connections == 3
        assert stats.idle == 3
        assert stats.in_use == 0
        assert stats.max_open_conns == 3

        await client.close()


@pytest.mark.unit
async def test_failover_list_passed_as_alt_hosts():
    """First address is the primary host; the rest become alt_hosts"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()

        client = await open_client(
            make_config(
                addresses=["127.0.0.1:9001", "127.0.0.1:9002", "127.0.0.1:9000"],
                compression="lz4",
                max_open_conns=1,
            )
        )

        kwargs = mock_client_class.call_args.kwargs
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 9001
        assert kwargs["alt_hosts"] == "127.0.0.1:9002,127.0.0.1:9000"
        assert kwargs["compression"] == "lz4"
        assert kwargs["user"] == "default"
        assert kwargs["database"] == "default"

        await client.close()


@pytest.mark.unit
async def test_open_accepts_dict_config():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()

        client = await open_client({"addresses": ["127.0.0.1:9000"], "max_open_conns": 2})

        assert client.stats().open_connections == 2
        assert "alt_hosts" not in mock_client_class.call_args.kwargs
        await client.close()


@pytest.mark.unit
async def test_connect_failure_raises_connect_error():
    """No reachable address surfaces as ConnectError"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conn = make_conn()
        conn.connection.force_connect.side_effect = driver_errors.NetworkError(
            "Code: 210. Connection refused (127.0.0.1:9000)"
        )
        mock_client_class.return_value = conn

        with pytest.raises(ConnectError, match="Connection refused"):
            await open_client(make_config())


@pytest.mark.unit
async def test_ping_past_deadline_fails_without_io():
    """An expired context fails with the DEADLINE_EXCEEDED sentinel before any I/O"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conn = make_conn()
        mock_client_class.return_value = conn

        client = await open_client(make_config(max_open_conns=1))
        conn.connection.ping.reset_mock()

        ctx, cancel = CallContext.background().with_deadline(time.time() - 1)
        with pytest.raises(type(DEADLINE_EXCEEDED)) as exc_info:
            await client.ping(ctx)
        cancel()

        assert exc_info.value is DEADLINE_EXCEEDED
        conn.connection.ping.assert_not_called()
        assert client.stats().in_use == 0
        assert client.stats().idle == 1

        await client.close()


@pytest.mark.unit
async def test_ping_past_deadline_after_cancel():
    """Cancelling an expired context does not change its error"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conn = make_conn()
        mock_client_class.return_value = conn
        client = await open_client(make_config(max_open_conns=1))

        ctx, cancel = CallContext.background().with_deadline(time.time() - 1)
        cancel()

        with pytest.raises(type(DEADLINE_EXCEEDED)) as exc_info:
            await client.ping(ctx)

        assert exc_info.value is DEADLINE_EXCEEDED
        conn.connection.ping.assert_not_called()
        await client.close()


@pytest.mark.unit
async def test_ping_cancelled_context():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()
        client = await open_client(make_config(max_open_conns=1))

        ctx, cancel = CallContext.background().with_cancel()
        child = decorate(ctx, with_settings({"max_block_size": 10}))
        cancel()

        with pytest.raises(type(CANCELLED)) as exc_info:
            await client.ping(child)
        assert exc_info.value is CANCELLED

        # Fresh context still works
        await client.ping(CallContext.background())
        await client.close()


@pytest.mark.unit
async def test_poison_connection_recovery():
    """Verify a connection interrupted mid-call is replaced, not returned"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        slow_conn = make_conn()
        replacement = make_conn()
        mock_client_class.side_effect = [slow_conn, replacement]

        client = await open_client(make_config(max_open_conns=1))
        slow_conn.connection.force_connect.side_effect = lambda: time.sleep(0.5)

        ctx, cancel = CallContext.background().with_timeout(0.05)
        with pytest.raises(type(DEADLINE_EXCEEDED)) as exc_info:
            await client.ping(ctx)
        cancel()

        assert exc_info.value is DEADLINE_EXCEEDED
        slow_conn.disconnect.assert_called()
        assert mock_client_class.call_count == 2

        # Pool is back at full size with the new connection
        assert client.stats().idle == 1
        assert client._pool.get_nowait() is replacement

        await client.close()


@pytest.mark.unit
async def test_connection_reuse():
    """Sequential operations reuse pooled connections"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()
        client = await open_client(make_config(max_open_conns=2))

        ctx = CallContext.background()
        for _ in range(5):
            await client.exec(ctx, "SELECT 1")

        assert mock_client_class.call_count == 2
        assert client.stats().idle == 2
        await client.close()


@pytest.mark.unit
async def test_concurrent_operations_wait_for_connection():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conn = make_conn()
        conn.execute.side_effect = lambda *args, **kwargs: time.sleep(0.02)
        mock_client_class.return_value = conn
        client = await open_client(make_config(max_open_conns=1))

        ctx = CallContext.background()
        await asyncio.gather(*(client.exec(ctx, "SELECT 1") for _ in range(4)))

        assert conn.execute.call_count == 4
        assert client.stats().idle == 1
        await client.close()


@pytest.mark.unit
async def test_exec_passes_params_and_settings():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conn = make_conn()
        mock_client_class.return_value = conn
        client = await open_client(make_config(max_open_conns=1))

        ctx = decorate(CallContext.background(), with_settings({"max_execution_time": 256}))
        await client.exec(ctx, "INSERT INTO t SELECT $1 FROM system.numbers LIMIT $2", 1, 200)

        args, kwargs = conn.execute.call_args
        assert args == (
            "INSERT INTO t SELECT %(p1)s FROM system.numbers LIMIT %(p2)s",
            {"p1": 1, "p2": 200},
        )
        assert kwargs == {"settings": {"max_execution_time": 256}}

        await client.close()


@pytest.mark.unit
async def test_exec_bind_error_before_io():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conn = make_conn()
        mock_client_class.return_value = conn
        client = await open_client(make_config(max_open_conns=1))

        with pytest.raises(BindError):
            await client.exec(CallContext.background(), "SELECT $1, $2", 1)

        conn.execute.assert_not_called()
        await client.close()


@pytest.mark.unit
async def test_server_exception_translated():
    """Server exception packets surface as ServerError with code and name"""
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conn = make_conn()
        conn.execute.side_effect = driver_errors.ServerException(
            "Table default.missing does not exist", code=60
        )
        mock_client_class.return_value = conn
        client = await open_client(make_config(max_open_conns=1))

        with pytest.raises(ServerError) as exc_info:
            await client.exec(CallContext.background(), "SELECT * FROM missing")

        assert exc_info.value.code == 60
        assert exc_info.value.name == "UNKNOWN_TABLE"
        assert "does not exist" in exc_info.value.message
        # Server errors leave the connection healthy
        conn.disconnect.assert_not_called()
        assert client.stats().idle == 1

        await client.close()


@pytest.mark.unit
async def test_close_drains_pool():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        conns = [make_conn() for _ in range(3)]
        mock_client_class.side_effect = conns
        client = await open_client(make_config(max_open_conns=3))

        await client.close()
        await client.close()  # idempotent

        for conn in conns:
            conn.disconnect.assert_called_once()
        stats = client.stats()
        assert stats.open_connections == 0
        assert stats.idle == 0
        assert stats.in_use == 0
        # Version stays cached after close
        assert client.server_version() == "24.3.1"


@pytest.mark.unit
async def test_operations_after_close_raise_closed_error():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()
        client = await open_client(make_config(max_open_conns=1))
        await client.close()

        ctx = CallContext.background()
        with pytest.raises(ClosedError):
            await client.ping(ctx)
        with pytest.raises(ClosedError):
            await client.exec(ctx, "SELECT 1")
        with pytest.raises(ClosedError):
            await client.query(ctx, "SELECT 1")


@pytest.mark.unit
async def test_async_context_manager_closes():
    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()

        async with await open_client(make_config(max_open_conns=1)) as client:
            await client.ping(CallContext.background())

        assert client.stats().open_connections == 0


@pytest.mark.unit
class TestTranslateError:
    """Test driver exception translation"""

    def test_network_error(self):
        assert isinstance(translate_error(driver_errors.NetworkError("refused")), ConnectError)

    def test_socket_error(self):
        assert isinstance(translate_error(ConnectionResetError("reset")), ConnectError)

    def test_unknown_code_name(self):
        err = translate_error(driver_errors.ServerException("boom", code=999999))

        assert isinstance(err, ServerError)
        assert err.name == "UNKNOWN"

    def test_client_error_passes_through(self):
        err = ClosedError("closed")

        assert translate_error(err) is err


@pytest.mark.unit
def test_new_client_not_connected():
    client = ClickHouseClient(make_config())

    assert client.stats().open_connections == 0
    assert client.server_version() == ""


@pytest.mark.unit
async def test_debug_is_per_client(caplog):
    """debug=True surfaces per-query detail without changing logger levels"""
    driver_logger = logging.getLogger("clickhouse_driver")
    provider_logger = logging.getLogger("providers.opensource.clickhouse")
    levels = (driver_logger.level, provider_logger.level)

    with patch("providers.opensource.clickhouse.Client") as mock_client_class:
        mock_client_class.side_effect = lambda **kwargs: make_conn()
        verbose = await open_client(make_config(max_open_conns=1, debug=True))
        quiet = await open_client(make_config(max_open_conns=1, debug=False))

        assert (driver_logger.level, provider_logger.level) == levels

        with caplog.at_level(logging.INFO, logger="providers.opensource.clickhouse"):
            await verbose.exec(CallContext.background(), "SELECT 1")
            await quiet.exec(CallContext.background(), "SELECT 2")

        executed = [r.getMessage() for r in caplog.records if "Executed" in r.getMessage()]
        assert len(executed) == 1
        assert executed[0].endswith("SELECT 1")

        await verbose.close()
        await quiet.close()
