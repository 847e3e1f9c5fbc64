"""
Soft assertions for conformance scenarios

A failed check is recorded with its source location and the scenario keeps
running. Every check returns a truthy/falsy value so a scenario can return
early when later steps depend on an earlier one:

    conn = await env.open(check)
    if conn is None:
        return
    if not await check.succeeds("ping", conn.ping(ctx)):
        return
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Failure:
    """One failed check"""

    scenario: str
    location: str
    message: str

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


@dataclass(frozen=True)
class Outcome:
    """Result of a checked step: value on success, error on failure"""

    ok: bool
    value: Any = None
    error: BaseException | None = None

    def __bool__(self) -> bool:
        return self.ok


def deep_equal(expected: Any, actual: Any) -> bool:
    """
    Type-strict structural equality

    Sequences and mappings compare element-wise; scalars must have the same
    type (so 1 != True and 10 != 10.0).
    """
    if isinstance(expected, list | tuple):
        return (
            type(expected) is type(actual)
            and len(expected) == len(actual)
            and all(deep_equal(e, a) for e, a in zip(expected, actual))
        )
    if isinstance(expected, dict):
        return (
            isinstance(actual, dict)
            and expected.keys() == actual.keys()
            and all(deep_equal(expected[k], actual[k]) for k in expected)
        )
    return type(expected) is type(actual) and expected == actual


def error_matches(err: BaseException | None, kind: BaseException | type[BaseException]) -> bool:
    """
    Compare an error against an expected kind

    Args:
        err: Raised error (None never matches)
        kind: Exception instance (compared by identity, for sentinels) or
            exception class (compared with isinstance)
    """
    if err is None:
        return False
    if isinstance(kind, BaseException):
        return err is kind
    return isinstance(err, kind)


def _location() -> str:
    """file:line of the first frame outside this module"""
    frame = inspect.currentframe()
    try:
        while frame is not None and frame.f_code.co_filename == __file__:
            frame = frame.f_back
        if frame is None:
            return "<unknown>"
        return f"{frame.f_code.co_filename.rsplit('/', 1)[-1]}:{frame.f_lineno}"
    finally:
        del frame


class Checker:
    """Records check failures for one scenario"""

    def __init__(self, scenario: str):
        self.scenario = scenario
        self.failures: list[Failure] = []
        self.logs: list[str] = []

    @property
    def failed(self) -> bool:
        return bool(self.failures)

    def fail(self, message: str) -> bool:
        failure = Failure(scenario=self.scenario, location=_location(), message=message)
        self.failures.append(failure)
        logger.warning(f"✗ [{self.scenario}] {failure}")
        return False

    def log(self, message: str) -> None:
        """Record an observation that is not asserted"""
        self.logs.append(message)
        logger.info(f"[{self.scenario}] {message}")

    # ============================================
    # VALUE CHECKS
    # ============================================
    def true(self, condition: bool, message: str = "expected condition to hold") -> bool:
        if condition:
            return True
        return self.fail(message)

    def equal(self, expected: Any, actual: Any, message: str = "") -> bool:
        if deep_equal(expected, actual):
            return True
        detail = f"expected {expected!r}, got {actual!r}"
        return self.fail(f"{message}: {detail}" if message else detail)

    def is_none(self, value: Any, message: str = "") -> bool:
        if value is None:
            return True
        detail = f"expected None, got {value!r}"
        return self.fail(f"{message}: {detail}" if message else detail)

    def same(self, expected: Any, actual: Any, message: str = "") -> bool:
        """Identity check (sentinel errors)"""
        if expected is actual:
            return True
        detail = f"expected the object {expected!r}, got {actual!r}"
        return self.fail(f"{message}: {detail}" if message else detail)

    def error_is(
        self,
        err: BaseException | None,
        kind: BaseException | type[BaseException],
        message: str = "",
    ) -> bool:
        if error_matches(err, kind):
            return True
        expected = kind if isinstance(kind, BaseException) else kind.__name__
        detail = f"expected error {expected!r}, got {err!r}"
        return self.fail(f"{message}: {detail}" if message else detail)

    # ============================================
    # STEP CHECKS
    # ============================================
    async def succeeds(self, step: str, awaitable: Awaitable[Any]) -> Outcome:
        """Await a step that must not raise"""
        try:
            value = await awaitable
        except Exception as e:
            self.fail(f"{step}: unexpected error {type(e).__name__}: {e}")
            return Outcome(ok=False, error=e)
        return Outcome(ok=True, value=value)

    def call(self, step: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Outcome:
        """Call a synchronous step that must not raise"""
        try:
            value = fn(*args, **kwargs)
        except Exception as e:
            self.fail(f"{step}: unexpected error {type(e).__name__}: {e}")
            return Outcome(ok=False, error=e)
        return Outcome(ok=True, value=value)

    async def fails(
        self,
        step: str,
        awaitable: Awaitable[Any],
        kind: BaseException | type[BaseException] | None = None,
    ) -> Outcome:
        """
        Await a step that must raise (optionally a specific kind)

        Returns:
            Outcome with ok=True and the raised error when the expectation held
        """
        try:
            value = await awaitable
        except Exception as e:
            if kind is None or self.error_is(e, kind, step):
                return Outcome(ok=True, error=e)
            return Outcome(ok=False, error=e)
        self.fail(f"{step}: expected an error, got {value!r}")
        return Outcome(ok=False, value=value)

    def raises(
        self,
        step: str,
        kind: type[BaseException],
        fn: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> Outcome:
        """Call a synchronous step that must raise `kind`"""
        try:
            value = fn(*args, **kwargs)
        except Exception as e:
            if self.error_is(e, kind, step):
                return Outcome(ok=True, error=e)
            return Outcome(ok=False, error=e)
        self.fail(f"{step}: expected {kind.__name__}, got {value!r}")
        return Outcome(ok=False, value=value)

    async def observe(self, step: str, awaitable: Awaitable[Any]) -> Outcome:
        """Await a step and log its outcome without asserting either way"""
        try:
            value = await awaitable
        except Exception as e:
            self.log(f"{step}: {type(e).__name__}: {e}")
            return Outcome(ok=False, error=e)
        self.log(f"{step}: {value!r}")
        return Outcome(ok=True, value=value)
