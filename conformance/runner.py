"""
Conformance runner

Runs registered scenarios against a client implementation and collects
results. Scenarios run concurrently; each is bounded by a timeout and an
uncaught exception fails only its own scenario.

Usage:
    from conformance.runner import run_conformance

    suite = await run_conformance()  # implementation from CLICKHOUSE_CLIENT_IMPL
    assert suite.success
"""

import asyncio
import fnmatch
import logging
import time
from dataclasses import dataclass

from config.settings import Settings, get_settings
from conformance import scenarios  # noqa: F401  (registers scenarios)
from conformance.assertions import Checker, Failure
from conformance.registry import RegisteredScenario, ScenarioEnv, list_scenarios
from core.interfaces.database import Opener
from factory.client_factory import create_clickhouse_opener

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConformanceResult:
    """Result of a single scenario"""

    key: str
    name: str
    passed: bool
    duration_ms: float
    failures: tuple[Failure, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class ConformanceSuite:
    """Aggregate results of a conformance run"""

    results: list[ConformanceResult]
    total: int
    passed: int
    failed: int
    duration_ms: float

    @property
    def success(self) -> bool:
        """Whether every scenario passed"""
        return self.failed == 0


async def run_scenario(
    registered: RegisteredScenario, env: ScenarioEnv, timeout: float
) -> ConformanceResult:
    """
    Run one scenario

    Args:
        registered: Scenario to run
        env: Client opener + settings
        timeout: Seconds before the scenario is cancelled and failed

    Returns:
        ConformanceResult (never raises for scenario errors)
    """
    check = Checker(registered.full_name)
    start = time.perf_counter()
    error: str | None = None

    task = asyncio.ensure_future(registered.fn(env, check))
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        task.cancel()
        # Let the scenario run its cleanup (conn.close()) before reporting
        await asyncio.wait({task})
        error = f"Scenario exceeded {timeout}s timeout"
    elif task.exception() is not None:
        exc = task.exception()
        error = f"{type(exc).__name__}: {exc}"
        logger.error(f"✗ {registered.full_name} raised {error}", exc_info=exc)

    duration_ms = (time.perf_counter() - start) * 1000
    passed = error is None and not check.failed

    if passed:
        logger.info(f"✓ {registered.full_name} passed ({duration_ms:.0f}ms)")
    else:
        logger.error(
            f"✗ {registered.full_name} failed ({duration_ms:.0f}ms): "
            f"{len(check.failures)} failed checks{', ' + error if error else ''}"
        )

    return ConformanceResult(
        key=registered.key,
        name=registered.name,
        passed=passed,
        duration_ms=duration_ms,
        failures=tuple(check.failures),
        error=error,
    )


async def run_conformance(
    opener: Opener | None = None,
    settings: Settings | None = None,
    pattern: str | None = None,
) -> ConformanceSuite:
    """
    Run the conformance suite

    Args:
        opener: open_client callable of the implementation under test
            (default: resolved from CLICKHOUSE_CLIENT_IMPL)
        settings: Settings (default: get_settings())
        pattern: fnmatch pattern on scenario key or name ("S*", "*failover*")

    Returns:
        ConformanceSuite with one result per selected scenario
    """
    settings = settings or get_settings()
    env = ScenarioEnv(opener=opener or create_clickhouse_opener(), settings=settings)

    selected = [
        s
        for s in list_scenarios()
        if pattern is None or fnmatch.fnmatch(s.key, pattern) or fnmatch.fnmatch(s.name, pattern)
    ]
    logger.info(f"Running {len(selected)} conformance scenarios")

    start = time.perf_counter()
    results = await asyncio.gather(
        *(run_scenario(s, env, settings.SCENARIO_TIMEOUT) for s in selected)
    )
    duration_ms = (time.perf_counter() - start) * 1000

    passed = sum(1 for r in results if r.passed)
    suite = ConformanceSuite(
        results=list(results),
        total=len(results),
        passed=passed,
        failed=len(results) - passed,
        duration_ms=duration_ms,
    )
    logger.info(
        f"{'✓' if suite.success else '✗'} Conformance: {suite.passed}/{suite.total} passed "
        f"in {duration_ms:.0f}ms"
    )
    return suite
