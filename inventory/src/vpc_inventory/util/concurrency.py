from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def parallel_map_ordered(
    func: Callable[[T], R],
    items: Sequence[T] | Iterable[T],
    max_workers: int,
) -> List[R]:
    """
    Execute func over items in a thread pool and return results preserving the
    input order. Exceptions from workers are propagated.

    Uses a sliding window of futures so large iterables are not materialized.
    """
    results: List[R] = []
    iterator = iter(items)
    inflight: Dict[Future[R], int] = {}
    pending: Dict[int, R] = {}
    next_index = 0
    submitted = 0
    max_workers = max(1, max_workers)

    def _submit_next() -> bool:
        nonlocal submitted
        try:
            item = next(iterator)
        except StopIteration:
            return False
        inflight[executor.submit(func, item)] = submitted
        submitted += 1
        return True

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        for _ in range(max_workers):
            if not _submit_next():
                break

        while inflight:
            done, _ = wait(inflight.keys(), return_when=FIRST_COMPLETED)
            for fut in done:
                idx = inflight.pop(fut)
                try:
                    pending[idx] = fut.result()
                except BaseException:
                    for pending_fut in inflight:
                        pending_fut.cancel()
                    raise
            for _ in range(len(done)):
                if not _submit_next():
                    break
            while next_index in pending:
                results.append(pending.pop(next_index))
                next_index += 1

    return results


@dataclass(frozen=True)
class Settled(Generic[T, R]):
    item: T
    value: Optional[R]
    error: Optional[Exception]

    @property
    def ok(self) -> bool:
        return self.error is None


def parallel_map_settled(
    func: Callable[[T], R],
    items: Sequence[T] | Iterable[T],
    max_workers: int,
) -> List[Settled[T, R]]:
    """
    Execute func over items in a thread pool and return one Settled per item in
    input order. A worker failing with Exception is captured on its Settled entry
    and never affects the other items; BaseException (KeyboardInterrupt...) still
    propagates.
    """

    def _settle(item: T) -> Settled[T, R]:
        try:
            return Settled(item=item, value=func(item), error=None)
        except Exception as e:
            return Settled(item=item, value=None, error=e)

    return parallel_map_ordered(_settle, items, max_workers=max_workers)
