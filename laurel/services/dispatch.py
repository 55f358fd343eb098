"""
laurel.services.dispatch — Fire-and-Forget Side-Effect Queue
=============================================================

Outbound work (badge awarding, notifications) is handed to a dispatcher
*after* the owning transaction commits.  A dispatcher never raises into the
caller: every job runs inside :func:`run_safely`, which logs and swallows.

Two implementations share the same ``submit`` signature:

* :class:`SideEffectDispatcher` — a bounded thread pool; the caller returns
  immediately.
* :class:`InlineDispatcher` — runs the job on the calling thread.  Used by
  tests and one-shot CLI commands where ordering matters more than latency.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Dispatcher(Protocol):
    def submit(self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        ...


def run_safely(label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call *func* and return its result, or ``None`` if it raised."""
    try:
        return func(*args, **kwargs)
    except Exception:
        logger.exception("Side effect %s failed", label)
        return None


class InlineDispatcher:
    """Runs each job immediately on the calling thread."""

    def submit(self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return run_safely(label, func, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        return None


class SideEffectDispatcher:
    """Thread-pool backed outbound queue.

    Usage::

        dispatcher = SideEffectDispatcher(max_workers=4)
        dispatcher.submit("notify:reward.earned", notifier.send, ...)
        ...
        dispatcher.shutdown()        # drain on exit
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="laurel-effects"
        )
        self._pending: set[Future] = set()

    def submit(self, label: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Future | None:
        try:
            future = self._executor.submit(run_safely, label, func, *args, **kwargs)
        except RuntimeError:
            # Executor already shut down; the primary action must still succeed.
            logger.warning("Dispatcher closed, dropping side effect %s", label)
            return None
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return future

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for queued jobs.  Returns ``True`` if all finished in time."""
        _, not_done = wait(list(self._pending), timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
