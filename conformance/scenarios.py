"""
Conformance scenarios

S1-S8 exercise the client contract end to end against a live server.
P1-P6 cover the universal properties (cursor lifecycle, NoRows, binding,
external-table invariants, cancellation, configuration errors).

Every scenario opens its own client, guards against leftover server state
(DROP ... IF EXISTS) and does not depend on the others.
"""

from datetime import datetime, timedelta

from conformance.assertions import Checker
from conformance.registry import ScenarioEnv, scenario
from core.column_types import DateTime, Int8, Int64, Nullable, String, UInt8, UInt64
from core.context import (
    CallContext,
    decorate,
    with_external_table,
    with_progress,
    with_settings,
)
from core.errors import (
    CANCELLED,
    DEADLINE_EXCEEDED,
    ArityMismatch,
    BindError,
    ConfigurationError,
    InvalidArgument,
    NoRows,
    TypeMismatch,
)
from core.external import column, new_table
from core.models.client import Progress


@scenario("S1", "open_ping_close")
async def open_ping_close(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    ctx = CallContext.background()
    if not await check.succeeds("ping", conn.ping(ctx)):
        await conn.close()
        return
    if not await check.succeeds("close", conn.close()):
        return

    # Observable after close; values are not part of the contract
    check.log(f"stats after close: {conn.stats()}")
    check.log(f"server version after close: {conn.server_version()}")
    await check.observe("ping after close", conn.ping(ctx))


@scenario("S2", "failover")
async def failover(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check, env.settings.CLICKHOUSE_FAILOVER_ADDRESSES)
    if conn is None:
        return

    try:
        ctx = CallContext.background()
        if await check.succeeds("ping", conn.ping(ctx)):
            check.true(bool(conn.server_version()), "server version must not be empty")
            check.log(f"server version: {conn.server_version()}")
            await check.observe("second ping", conn.ping(ctx))
    finally:
        await conn.close()


@scenario("S3", "ping_past_deadline")
async def ping_past_deadline(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    try:
        ctx, cancel = CallContext.background().with_deadline(datetime.now() - timedelta(seconds=1))
        try:
            outcome = await check.fails("ping", conn.ping(ctx))
            if outcome:
                check.same(DEADLINE_EXCEEDED, outcome.error, "ping error")
        finally:
            cancel()
    finally:
        await conn.close()


@scenario("S4", "exec_lifecycle")
async def exec_lifecycle(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    ctx = CallContext.background()
    await check.succeeds("drop", conn.exec(ctx, "DROP TABLE IF EXISTS test_exec"))
    await check.succeeds(
        "create",
        conn.exec(
            ctx,
            """
            CREATE TABLE test_exec (
                Column1 UInt8
            ) Engine = Memory
            """,
        ),
    )
    await check.succeeds(
        "insert",
        conn.exec(
            ctx,
            """
            INSERT INTO test_exec (Column1)
            SELECT 1 FROM system.numbers LIMIT 200
            """,
        ),
    )
    await check.succeeds("close", conn.close())


@scenario("S5", "query_streaming_nullable")
async def query_streaming_nullable(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    ctx, cancel = CallContext.background().with_timeout(1.0)
    ctx = decorate(ctx, with_settings({"max_block_size": 3}))
    try:
        outcome = await check.succeeds(
            "query",
            conn.query(
                ctx,
                """
                SELECT
                    number AS int
                    , number::Nullable(UInt64) AS nullable
                FROM system.numbers
                LIMIT 20
                """,
            ),
        )
        if not outcome:
            return
        rows = outcome.value

        if not check.equal(["int", "nullable"], rows.columns(), "columns"):
            await rows.close()
            return

        count = 0
        while await rows.next():
            scanned = check.call("scan", rows.scan, UInt64, Nullable(UInt64))
            if scanned:
                row_int, row_nullable = scanned.value
                check.equal(row_int, row_nullable, f"row {count}")
            count += 1

        check.equal(20, count, "row count")
        if await check.succeeds("rows close", rows.close()):
            check.is_none(rows.err(), "rows err")
    finally:
        cancel()
        await conn.close()


@scenario("S6", "bind_numeric")
async def bind_numeric(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    try:
        outcome = await check.succeeds(
            "query",
            conn.query(
                CallContext.background(),
                """
                SELECT
                      $1::Int8
                    , $2::Int64
                    , $1::UInt8
                    , $2::UInt64
                """,
                10,
                1000,
            ),
        )
        if not outcome:
            return
        rows = outcome.value

        count = 0
        while await rows.next():
            count += 1
            scanned = check.call("scan", rows.scan, Int8, Int64, UInt8, UInt64)
            if scanned:
                int8_column, int64_column, uint8_column, uint64_column = scanned.value
                check.equal(10, int8_column, "Int8")
                check.equal(1000, int64_column, "Int64")
                check.equal(10, uint8_column, "UInt8")
                check.equal(1000, uint64_column, "UInt64")
        await rows.close()

        check.equal(1, count, "row count")
        check.is_none(rows.err(), "rows err")
    finally:
        await conn.close()


@scenario("S7", "external_tables")
async def external_tables(env: ScenarioEnv, check: Checker) -> None:
    tables = []
    for name in ("external_table_1", "external_table_2"):
        created = check.call(
            f"new table {name}",
            new_table,
            name,
            column("col1", "UInt8"),
            column("col2", "String"),
            column("col3", "DateTime"),
        )
        if not created:
            return
        table = created.value
        for i in range(10):
            check.call(f"append {name}", table.append, i, f"value_{i}", datetime.now())
        tables.append(table)

    conn = await env.open(check)
    if conn is None:
        return

    try:
        ctx = decorate(CallContext.background(), with_external_table(*tables))

        outcome = await check.succeeds(
            "select external_table_1", conn.query(ctx, "SELECT * FROM external_table_1")
        )
        if outcome:
            rows = outcome.value
            count = 0
            while await rows.next():
                scanned = check.call("scan", rows.scan, UInt8, String, DateTime)
                if scanned:
                    col1, col2, col3 = scanned.value
                    check.equal(f"value_{col1}", col2, "col2")
                count += 1
            await rows.close()
            check.equal(10, count, "external_table_1 rows")
            check.is_none(rows.err(), "rows err")

        for sql, expected in (
            ("SELECT COUNT(*) FROM external_table_1", 10),
            ("SELECT COUNT(*) FROM external_table_2", 10),
            (
                "SELECT COUNT(*) FROM "
                "(SELECT * FROM external_table_1 UNION ALL SELECT * FROM external_table_2)",
                20,
            ),
        ):
            counted = await check.succeeds(sql, conn.query_row(ctx, sql).scan(UInt64))
            if counted:
                check.equal((expected,), counted.value, sql)
    finally:
        await conn.close()


@scenario("S8", "context_decorators")
async def context_decorators(env: ScenarioEnv, check: Checker) -> None:
    progress: list[Progress] = []

    def on_progress(p: Progress) -> None:
        progress.append(p)

    ctx = decorate(
        CallContext.background(),
        with_progress(on_progress),
        with_settings({"max_execution_time": 256}),
    )
    check.equal({"max_execution_time": 256}, dict(ctx.settings), "settings")
    check.same(on_progress, ctx.progress, "progress handler")

    conn = await env.open(check)
    if conn is None:
        return

    try:
        outcome = await check.succeeds(
            "getSetting",
            conn.query_row(ctx, "SELECT toUInt64(getSetting('max_execution_time'))").scan(UInt64),
        )
        if outcome:
            check.equal((256,), outcome.value, "max_execution_time seen by the server")

        # Enough rows for the server to push progress packets
        progress.clear()
        counted = await check.succeeds(
            "count numbers",
            conn.query_row(ctx, "SELECT count() FROM numbers(10000000)").scan(UInt64),
        )
        if counted:
            check.equal((10000000,), counted.value, "count")

        check.log(f"progress callbacks: {len(progress)}")
        check.true(
            any(p.rows > 0 for p in progress),
            "progress handler must observe rows read by the query",
        )
        check.true(
            all(a.rows <= b.rows for a, b in zip(progress, progress[1:])),
            "progress counters must not decrease",
        )
    finally:
        await conn.close()


# ============================================
# UNIVERSAL PROPERTIES
# ============================================
@scenario("P1", "rows_lifecycle")
async def rows_lifecycle(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    try:
        outcome = await check.succeeds(
            "query", conn.query(CallContext.background(), "SELECT number FROM system.numbers LIMIT 3")
        )
        if not outcome:
            return
        rows = outcome.value

        seen = 0
        async for _ in rows:
            seen += 1
        check.equal(3, seen, "rows")
        check.true(not await rows.next(), "next after exhaustion must stay False")
        check.is_none(rows.err(), "err after normal exhaustion")
        await check.succeeds("first close", rows.close())
        await check.succeeds("second close", rows.close())
        check.equal(0, conn.stats().in_use, "connections in use after close")
    finally:
        await conn.close()


@scenario("P2", "query_row_no_rows")
async def query_row_no_rows(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    try:
        await check.fails(
            "scan empty result",
            conn.query_row(CallContext.background(), "SELECT 1 WHERE 0").scan(UInt8),
            NoRows,
        )
    finally:
        await conn.close()


@scenario("P3", "bind_missing_argument")
async def bind_missing_argument(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    try:
        ctx = CallContext.background()
        await check.fails("query", conn.query(ctx, "SELECT $1, $2", 1), BindError)
        await check.fails("exec", conn.exec(ctx, "SELECT $0"), BindError)
    finally:
        await conn.close()


@scenario("P4", "external_table_invariants")
async def external_table_invariants(env: ScenarioEnv, check: Checker) -> None:
    check.raises("empty name", InvalidArgument, new_table, "", column("a", "UInt8"))
    check.raises("bad type", InvalidArgument, new_table, "t", column("a", "NoSuchType"))
    check.raises("empty column", InvalidArgument, new_table, "t", column("", "UInt8"))

    created = check.call("new table", new_table, "t", column("a", "UInt8"), column("b", "String"))
    if not created:
        return
    table = created.value

    check.raises("short row", ArityMismatch, table.append, 1)
    check.raises("long row", ArityMismatch, table.append, 1, "x", 2)
    check.raises("out of range", TypeMismatch, table.append, 256, "x")
    check.raises("wrong family", TypeMismatch, table.append, 1, 2)

    for i in range(5):
        check.call("append", table.append, i, str(i))
    check.equal(5, len(table), "rows kept after rejected appends")
    check.true(all(len(row) == 2 for row in table.rows), "every row has column arity")


@scenario("P5", "cancelled_context")
async def cancelled_context(env: ScenarioEnv, check: Checker) -> None:
    conn = await env.open(check)
    if conn is None:
        return

    try:
        ctx, cancel = CallContext.background().with_cancel()
        child = decorate(ctx, with_settings({"max_block_size": 10}))
        cancel()
        outcome = await check.fails("ping", conn.ping(child))
        if outcome:
            check.same(CANCELLED, outcome.error, "ping error")
        await check.succeeds("ping with fresh context", conn.ping(CallContext.background()))
    finally:
        await conn.close()


@scenario("P6", "configuration_errors")
async def configuration_errors(env: ScenarioEnv, check: Checker) -> None:
    check.raises("empty addresses", ConfigurationError, env.config, [])
    check.raises("no port", ConfigurationError, env.config, ["127.0.0.1"])
    check.raises("unknown compression", ConfigurationError, env.config, None, compression="zstd7")
