from __future__ import annotations

from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Iterator, TypeVar

T = TypeVar("T")
R = TypeVar("R")

_DONE = object()


def ordered_map(fn: Callable[[T], R], items: Iterable[T], *, workers: int = 1) -> Iterator[R]:
    """Apply ``fn`` to ``items`` in a thread pool, yielding results in input order.

    At most ``2 * workers`` items are in flight, so a lazy ``items``
    iterable is never fully materialized. ``workers == 1`` runs inline.
    """
    workers = int(workers)
    if workers <= 1:
        for item in items:
            yield fn(item)
        return

    todo = iter(items)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        pending: deque = deque()
        for item in todo:
            pending.append(pool.submit(fn, item))
            if len(pending) >= 2 * workers:
                break
        while pending:
            fut = pending.popleft()
            nxt = next(todo, _DONE)
            if nxt is not _DONE:
                pending.append(pool.submit(fn, nxt))
            yield fut.result()


def chunk_bounds(start: int, stop: int, size: int) -> list[tuple[int, int]]:
    """Split ``[start, stop)`` into consecutive ``[s, e)`` ranges of at most ``size``."""
    return [(s, min(s + size, stop)) for s in range(start, stop, size)]
