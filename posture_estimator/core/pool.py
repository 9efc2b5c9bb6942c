"""
Task Pool Module
================

Bounded thread pools with per-task failure isolation.

The same pool abstraction drives both fan-out layers of an estimation
run: scope units (bounded by ``RunConfig.max_workers``) and, within a
scope unit, its regions.

Classes
-------
TaskOutcome
    Result or error of one task.
TaskPool
    Runs a function over items on a bounded ThreadPoolExecutor.
ConcurrencyController
    TaskPool specialised for scope units.

Example
-------
>>> pool = TaskPool(max_workers=4, name="regions")
>>> outcomes = pool.run(["us-east-1", "eu-west-1"], count_region)
>>> failed = [o for o in outcomes if not o.ok]
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from posture_estimator.core.models import ScopeUnit

# Module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[str, str], None]


@dataclass
class TaskOutcome(Generic[T, R]):
    """
    Result of one pooled task.

    Attributes
    ----------
    item : Any
        The item the task was invoked with.
    result : Any or None
        Return value when the task succeeded.
    error : BaseException or None
        Exception raised by the task.
    elapsed : float
        Wall-clock seconds spent in the task.
    """

    item: T
    result: Optional[R] = None
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskPool:
    """
    Run a function over a sequence of items with at most ``max_workers``
    invocations in flight.

    Every item is attempted exactly once. An exception raised by one
    invocation is captured in its :class:`TaskOutcome` and never stops
    the others. ``run`` returns only after every task has finished.

    Parameters
    ----------
    max_workers : int
        Maximum concurrent invocations.
    name : str, default="pool"
        Thread name prefix, shown in file logs.
    label : callable, optional
        Turns an item into the string passed to progress callbacks.
    """

    def __init__(
        self,
        max_workers: int,
        name: str = "pool",
        label: Optional[Callable[[Any], str]] = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.name = name
        self._label = label or str

    def _notify(
        self, progress_callback: Optional[ProgressCallback], label: str, status: str
    ) -> None:
        """Report progress; a failing callback never fails the task."""
        if not progress_callback:
            return
        try:
            progress_callback(label, status)
        except Exception as e:
            logger.warning(f"{self.name} progress callback failed for {label}: {e}")

    def _invoke(
        self,
        fn: Callable[[T], R],
        item: T,
        progress_callback: Optional[ProgressCallback],
    ) -> TaskOutcome:
        label = self._label(item)
        started = time.perf_counter()
        self._notify(progress_callback, label, "scanning")
        try:
            result = fn(item)
        except Exception as e:
            elapsed = time.perf_counter() - started
            logger.debug(f"{self.name} task {label} failed: {e}")
            self._notify(progress_callback, label, "error")
            return TaskOutcome(item=item, error=e, elapsed=elapsed)

        elapsed = time.perf_counter() - started
        self._notify(progress_callback, label, "complete")
        return TaskOutcome(item=item, result=result, elapsed=elapsed)

    def run(
        self,
        items: Sequence[T],
        fn: Callable[[T], R],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[TaskOutcome]:
        """
        Invoke ``fn`` once per item and collect the outcomes.

        Parameters
        ----------
        items : sequence
            Items to process.
        fn : callable
            Function called with one item.
        progress_callback : callable, optional
            Called with (label, status), status one of
            'scanning', 'complete', 'error'.

        Returns
        -------
        list of TaskOutcome
            One outcome per item, in completion order.
        """
        if not items:
            return []

        outcomes: List[TaskOutcome] = []
        workers = min(self.max_workers, len(items))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=self.name
        ) as executor:
            futures = [
                executor.submit(self._invoke, fn, item, progress_callback)
                for item in items
            ]
            for future in as_completed(futures):
                outcomes.append(future.result())

        return outcomes

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, max_workers={self.max_workers})"


class ConcurrencyController(TaskPool):
    """
    Bounded worker pool over scope units.

    Failures are isolated per scope unit: one unit's processing error is
    logged and recorded, and never prevents the others from starting or
    completing.

    Parameters
    ----------
    max_workers : int, default=10
        Scope units processed simultaneously.

    Example
    -------
    >>> controller = ConcurrencyController(max_workers=10)
    >>> outcomes = controller.run(scope_units, engine.process_scope)
    """

    def __init__(self, max_workers: int = 10) -> None:
        super().__init__(
            max_workers=max_workers,
            name="scope",
            label=lambda scope: scope.label,
        )

    def run(
        self,
        items: Sequence[ScopeUnit],
        fn: Callable[[ScopeUnit], R],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[TaskOutcome]:
        logger.info(
            f"Processing {len(items)} scope units with up to "
            f"{self.max_workers} in parallel"
        )
        outcomes = super().run(items, fn, progress_callback)
        failed = [o for o in outcomes if not o.ok]
        for outcome in failed:
            logger.warning(
                f"Scope unit {outcome.item.label} skipped: {outcome.error}"
            )
        logger.info(
            f"Processed {len(outcomes) - len(failed)}/{len(outcomes)} scope units"
        )
        return outcomes
