"""Bounded concurrent execution for per-message classifier calls."""

from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_concurrently(func: Callable[[T], R], items: list[T], max_workers: int) -> list[R]:
    """Call ``func`` on every item using up to ``max_workers`` threads.

    Every call is allowed to finish before returning. If any call raised,
    the exception of the earliest failing item is re-raised and no results
    are returned.

    Args:
        func: Function applied to each item.
        items: Inputs.
        max_workers: Upper bound on concurrent calls.

    Returns:
        Results in input order.
    """
    if not items:
        return []

    workers = max(1, min(max_workers, len(items)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(func, item) for item in items]
        wait(futures)

    for future in futures:
        error = future.exception()
        if error is not None:
            raise error

    return [future.result() for future in futures]
