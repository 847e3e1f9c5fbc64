"""
Unit tests for the ClickHouse streaming row cursor

Tests:
- Column metadata before the first next()
- Typed scanning (arity, Nullable rules) with the cursor staying usable
- Stream errors reported through err()
- Connection release on exhaustion / close
- Progress delivery (deduplicated)
- query_row / NoRows
"""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from clickhouse_driver import errors as driver_errors

from core.column_types import Nullable, UInt8, UInt64
from core.context import CallContext, decorate, with_external_table, with_progress, with_query_id
from core.errors import (
    DEADLINE_EXCEEDED,
    ArityMismatch,
    ClosedError,
    InvalidArgument,
    NoRows,
    ServerError,
    TypeMismatch,
)
from core.external import column, new_table
from core.models.client import build_config
from providers.opensource.clickhouse import open_client

HEADER = [("int", "UInt64"), ("nullable", "Nullable(UInt64)")]


def make_conn(stream=None) -> MagicMock:
    conn = MagicMock()
    conn.connection.server_info.version_major = 24
    conn.connection.server_info.version_minor = 3
    conn.connection.server_info.version_patch = 1
    conn.last_query = None
    if stream is not None:
        conn.execute_iter.side_effect = lambda *args, **kwargs: iter(stream)
    return conn


async def open_with(conn):
    with patch("providers.opensource.clickhouse.Client", return_value=conn):
        return await open_client(build_config(addresses=["127.0.0.1:9000"], max_open_conns=1))


@pytest.mark.unit
async def test_streams_rows_with_columns():
    conn = make_conn([HEADER] + [(i, i) for i in range(20)])
    client = await open_with(conn)

    rows = await client.query(CallContext.background(), "SELECT number, number FROM numbers(20)")

    # Metadata before the first next()
    assert rows.columns() == ["int", "nullable"]
    assert rows.column_types() == ["UInt64", "Nullable(UInt64)"]
    assert client.stats().in_use == 1

    count = 0
    while await rows.next():
        row_int, row_nullable = rows.scan(UInt64, Nullable(UInt64))
        assert row_int == row_nullable == count
        count += 1

    assert count == 20
    assert rows.err() is None
    assert client.stats().in_use == 0
    # Fully read stream returns a healthy connection
    conn.disconnect.assert_not_called()

    await rows.close()
    await client.close()


@pytest.mark.unit
async def test_execute_iter_called_with_column_types_and_context_options():
    table = new_table("external_table_1", column("col1", "UInt8"))
    table.append(1)
    conn = make_conn([[("col1", "UInt8")], (1,)])
    client = await open_with(conn)

    ctx = decorate(
        CallContext.background(), with_external_table(table), with_query_id("conformance-7")
    )
    rows = await client.query(ctx, "SELECT * FROM external_table_1 WHERE col1 = $1", 1)
    await rows.close()

    args, kwargs = conn.execute_iter.call_args
    assert args == ("SELECT * FROM external_table_1 WHERE col1 = %(p1)s", {"p1": 1})
    assert kwargs["with_column_types"] is True
    assert kwargs["external_tables"] == [
        {"name": "external_table_1", "structure": [("col1", "UInt8")], "data": [{"col1": 1}]}
    ]
    assert kwargs["query_id"] == "conformance-7"

    await client.close()


@pytest.mark.unit
async def test_nullable_column_needs_nullable_destination():
    """A rejected scan leaves the cursor on the same row"""
    conn = make_conn([HEADER, (1, 1), (2, None)])
    client = await open_with(conn)
    rows = await client.query(CallContext.background(), "SELECT 1")

    assert await rows.next()
    with pytest.raises(TypeMismatch):
        rows.scan(UInt64, UInt64)
    assert rows.scan(UInt64, Nullable(UInt64)) == (1, 1)

    assert await rows.next()
    assert rows.scan(UInt64, Nullable(UInt64)) == (2, None)
    assert rows.scan(int, int | None) == (2, None)

    await rows.close()
    await client.close()


@pytest.mark.unit
async def test_scan_arity_mismatch():
    conn = make_conn([HEADER, (1, 1)])
    client = await open_with(conn)
    rows = await client.query(CallContext.background(), "SELECT 1")

    assert await rows.next()
    with pytest.raises(ArityMismatch):
        rows.scan(UInt64)

    await rows.close()
    await client.close()


@pytest.mark.unit
async def test_scan_without_row():
    conn = make_conn([HEADER, (1, 1)])
    client = await open_with(conn)
    rows = await client.query(CallContext.background(), "SELECT 1")

    with pytest.raises(InvalidArgument):
        rows.scan(UInt64, Nullable(UInt64))

    await rows.close()
    with pytest.raises(ClosedError):
        rows.scan(UInt64, Nullable(UInt64))
    await client.close()


@pytest.mark.unit
async def test_close_before_exhaustion_discards_connection():
    conn = make_conn([HEADER] + [(i, i) for i in range(10)])
    client = await open_with(conn)
    rows = await client.query(CallContext.background(), "SELECT 1")

    assert await rows.next()
    await rows.close()
    await rows.close()  # idempotent

    conn.disconnect.assert_called_once()
    assert not await rows.next()
    assert client.stats().in_use == 0
    assert client.stats().idle == 1

    await client.close()


@pytest.mark.unit
async def test_stream_error_reported_by_err():
    def stream():
        yield HEADER
        yield (1, 1)
        raise driver_errors.ServerException("Memory limit exceeded", code=241)

    conn = make_conn()
    conn.execute_iter.side_effect = lambda *args, **kwargs: stream()
    client = await open_with(conn)
    rows = await client.query(CallContext.background(), "SELECT 1")

    assert await rows.next()
    assert not await rows.next()
    assert not await rows.next()

    err = rows.err()
    assert isinstance(err, ServerError)
    assert err.code == 241
    assert err.name == "MEMORY_LIMIT_EXCEEDED"
    assert client.stats().in_use == 0

    await rows.close()
    await client.close()


@pytest.mark.unit
async def test_acquire_times_out_when_pool_exhausted():
    conn = make_conn([HEADER, (1, 1)])
    client = await open_with(conn)
    held = await client.query(CallContext.background(), "SELECT 1")

    ctx, cancel = CallContext.background().with_timeout(0.05)
    with pytest.raises(type(DEADLINE_EXCEEDED)) as exc_info:
        await client.query(ctx, "SELECT 1")
    cancel()

    assert exc_info.value is DEADLINE_EXCEEDED
    await held.close()
    assert client.stats().idle == 1
    await client.close()


@pytest.mark.unit
async def test_progress_delivered_once_per_change():
    progress_state = SimpleNamespace(
        rows=0, bytes=0, total_rows=20, written_rows=0, written_bytes=0
    )

    def stream():
        yield HEADER
        for i in range(4):
            # Two rows per progress update
            if i % 2 == 0:
                progress_state.rows += 2
                progress_state.bytes += 16
            yield (i, i)

    conn = make_conn()
    conn.last_query = SimpleNamespace(progress=progress_state)
    conn.execute_iter.side_effect = lambda *args, **kwargs: stream()
    client = await open_with(conn)

    seen = []
    ctx = decorate(CallContext.background(), with_progress(seen.append))
    rows = await client.query(ctx, "SELECT 1")
    async for _ in rows:
        pass

    assert [p.rows for p in seen] == [0, 2, 4]
    assert all(p.total_rows == 20 for p in seen)
    assert all(a.elapsed <= b.elapsed for a, b in zip(seen, seen[1:]))

    await rows.close()
    await client.close()


@pytest.mark.unit
async def test_query_row_scans_first_row():
    conn = make_conn([[("count()", "UInt64")], (10,)])
    client = await open_with(conn)

    assert await client.query_row(CallContext.background(), "SELECT count()").scan(UInt64) == (10,)
    assert client.stats().in_use == 0

    await client.close()


@pytest.mark.unit
async def test_query_row_no_rows():
    conn = make_conn([[("1", "UInt8")]])
    client = await open_with(conn)

    with pytest.raises(NoRows, match="no rows"):
        await client.query_row(CallContext.background(), "SELECT 1 WHERE 0").scan(UInt8)

    assert client.stats().in_use == 0
    await client.close()


@pytest.mark.unit
async def test_rows_async_context_manager():
    conn = make_conn([HEADER, (1, 1), (2, 2)])
    client = await open_with(conn)

    async with await client.query(CallContext.background(), "SELECT 1") as rows:
        assert await rows.next()

    assert client.stats().in_use == 0
    await client.close()
