"""
Call context - cancellation, deadline and per-query options

A CallContext is threaded through every client operation. It carries:
- A cancellation token with an optional deadline (shared with children)
- Query settings (name -> value)
- An optional progress callback
- External tables shipped with the query
- An optional query id

Contexts are immutable. Decorators return a new context that shares the
parent's token, so cancelling the parent terminates every operation bound
to a decorated child.

Usage:
    ctx, cancel = CallContext.background().with_timeout(1.0)
    ctx = decorate(ctx, with_settings({"max_block_size": 3}))
    rows = await client.query(ctx, "SELECT 1")
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, TypeVar

from core.errors import CANCELLED, DEADLINE_EXCEEDED, ClientError, InvalidArgument
from core.models.client import Progress

if TYPE_CHECKING:
    from core.external import ExternalTable

T = TypeVar("T")

ProgressHandler = Callable[[Progress], None]
ContextOption = Callable[["CallContext"], "CallContext"]


class _Token:
    """Cancellation state shared by a context and all its decorated copies"""

    def __init__(self, parent: "_Token | None" = None, deadline: float | None = None):
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: ClientError | None = None
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0
        self._parent = parent
        self._unlink: Callable[[], None] | None = None

        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

        # The background token never fires, so children need not register with it
        if parent is not None and parent is not _BACKGROUND_TOKEN:
            self._unlink = parent.add_callback(self.cancel)

    def _deadline_passed(self) -> bool:
        return self.deadline is not None and time.time() >= self.deadline

    def err(self) -> ClientError | None:
        # The first termination reason sticks; a later cancel() keeps DEADLINE_EXCEEDED
        if self._reason is not None:
            return self._reason
        if self._deadline_passed():
            with self._lock:
                if self._reason is None:
                    self._reason = DEADLINE_EXCEEDED
                return self._reason
        if self._parent is not None:
            return self._parent.err()
        return None

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            if self._reason is None:
                self._reason = DEADLINE_EXCEEDED if self._deadline_passed() else CANCELLED
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        if self._unlink is not None:
            self._unlink()
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register callback for cancellation; returns a function that unregisters it"""
        with self._lock:
            if not self._cancelled:
                key = self._next_id
                self._next_id += 1
                self._callbacks[key] = callback

                def remove() -> None:
                    with self._lock:
                        self._callbacks.pop(key, None)

                return remove

        callback()
        return lambda: None


_BACKGROUND_TOKEN = _Token()


@dataclass(frozen=True, eq=False)
class CallContext:
    """
    Immutable per-call context

    Build derived contexts with with_cancel/with_deadline/with_timeout and
    attach query options with decorate(ctx, with_settings(...), ...).
    """

    _token: _Token = field(repr=False)
    settings: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    progress: ProgressHandler | None = None
    external_tables: tuple["ExternalTable", ...] = ()
    query_id: str | None = None

    @classmethod
    def background(cls) -> "CallContext":
        """Root context: never cancelled, no deadline"""
        return cls(_token=_BACKGROUND_TOKEN)

    # ============================================
    # CANCELLATION / DEADLINE
    # ============================================
    def with_cancel(self) -> tuple["CallContext", Callable[[], None]]:
        """Derive a cancellable child context"""
        token = _Token(parent=self._token)
        return replace(self, _token=token), token.cancel

    def with_deadline(self, when: datetime | float) -> tuple["CallContext", Callable[[], None]]:
        """
        Derive a child context that expires at `when`

        Args:
            when: datetime (naive values are local time) or epoch seconds

        Returns:
            (child context, cancel function)
        """
        deadline = when.timestamp() if isinstance(when, datetime) else float(when)
        token = _Token(parent=self._token, deadline=deadline)
        return replace(self, _token=token), token.cancel

    def with_timeout(self, seconds: float) -> tuple["CallContext", Callable[[], None]]:
        """Derive a child context that expires `seconds` from now"""
        return self.with_deadline(time.time() + seconds)

    @property
    def deadline(self) -> float | None:
        """Effective deadline as epoch seconds, or None"""
        return self._token.deadline

    def err(self) -> ClientError | None:
        """CANCELLED, DEADLINE_EXCEEDED, or None while the context is live"""
        return self._token.err()

    @property
    def done(self) -> bool:
        return self.err() is not None

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), or None without deadline"""
        if self._token.deadline is None:
            return None
        return max(0.0, self._token.deadline - time.time())

    def raise_if_done(self) -> None:
        err = self.err()
        if err is not None:
            raise err.with_traceback(None)

    def add_done_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call `callback` on cancellation (not on deadline); returns an unregister function"""
        return self._token.add_callback(callback)


# ============================================
# DECORATORS
# ============================================
def with_settings(settings: Mapping[str, Any]) -> ContextOption:
    """Merge query settings; later keys override earlier ones"""
    settings = dict(settings)

    def apply(ctx: CallContext) -> CallContext:
        merged = {**ctx.settings, **settings}
        return replace(ctx, settings=MappingProxyType(merged))

    return apply


def with_progress(handler: ProgressHandler) -> ContextOption:
    """Install a progress handler, replacing any earlier one"""
    if not callable(handler):
        raise InvalidArgument("Progress handler must be callable")

    def apply(ctx: CallContext) -> CallContext:
        return replace(ctx, progress=handler)

    return apply


def with_external_table(*tables: "ExternalTable") -> ContextOption:
    """Append external tables to the context's table list"""

    def apply(ctx: CallContext) -> CallContext:
        return replace(ctx, external_tables=ctx.external_tables + tables)

    return apply


def with_query_id(query_id: str) -> ContextOption:
    """Tag queries with an explicit query id (visible in system.query_log)"""

    def apply(ctx: CallContext) -> CallContext:
        return replace(ctx, query_id=query_id)

    return apply


def decorate(ctx: CallContext, *options: ContextOption) -> CallContext:
    """
    Apply context decorators in order

    Example:
        >>> ctx = decorate(
        ...     CallContext.background(),
        ...     with_progress(lambda p: None),
        ...     with_settings({"max_execution_time": 256}),
        ... )
    """
    for option in options:
        ctx = option(ctx)
    return ctx


async def bounded(ctx: CallContext, awaitable: Awaitable[T]) -> T:
    """
    Await `awaitable` unless `ctx` is cancelled or its deadline passes first

    Raises:
        DeadlineExceeded: DEADLINE_EXCEEDED sentinel
        Cancelled: CANCELLED sentinel
    """
    err = ctx.err()
    if err is not None:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise err.with_traceback(None)

    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(awaitable)
    interrupted = loop.create_future()

    def _interrupt() -> None:
        if not interrupted.done():
            interrupted.set_result(None)

    remove = ctx.add_done_callback(lambda: loop.call_soon_threadsafe(_interrupt))
    try:
        done, _ = await asyncio.wait(
            {task, interrupted},
            timeout=ctx.remaining(),
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        remove()
        if not interrupted.done():
            interrupted.cancel()

    if task in done:
        return task.result()

    task.cancel()
    err = ctx.err() or DEADLINE_EXCEEDED
    raise err.with_traceback(None)
