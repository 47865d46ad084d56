# Overview: Service-layer helpers for concurrent fetches and out-of-order responses.

from __future__ import annotations

import itertools
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from ..client import APIError, SessionExpired


@dataclass
class FetchResult:
    """Outcome of one fetch run by fetch_parallel: a value or the error it raised."""
    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self, default: Any = None) -> Any:
        return self.value if self.error is None else default


class FetchSequencer:
    """
    Tags fetches with monotonically increasing tickets, per key.

    Responses complete in network order, not request order. A caller takes a
    ticket before sending and applies the response through apply_if_current();
    anything superseded by a later ticket for the same key is dropped.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._latest: dict[Hashable, int] = {}

    def issue(self, key: Hashable) -> int:
        with self._lock:
            ticket = next(self._counter)
            self._latest[key] = ticket
            return ticket

    def apply_if_current(self, key: Hashable, ticket: int, apply: Callable[[], None]) -> bool:
        """Run `apply` atomically with the currency check."""
        with self._lock:
            if self._latest.get(key) != ticket:
                return False
            apply()
            return True


def fetch_parallel(
    max_workers: int = 4,
    captures: tuple[type[BaseException], ...] = (APIError,),
    **calls: Callable[[], Any],
) -> dict[str, FetchResult]:
    """
    Run independent fetches concurrently.

    An exception listed in `captures` is kept in its FetchResult instead of
    aborting the others, so a failing dropdown source does not blank the
    whole page. Anything else is re-raised here once every fetch has finished.
    """
    if not calls:
        return {}

    def _run(fn: Callable[[], Any]) -> FetchResult:
        try:
            return FetchResult(value=fn())
        except captures as exc:
            return FetchResult(error=exc)

    with ThreadPoolExecutor(max_workers=min(max_workers, len(calls))) as pool:
        futures = {name: pool.submit(_run, fn) for name, fn in calls.items()}
        return {name: future.result() for name, future in futures.items()}


def raise_session_errors(results: dict[str, FetchResult]) -> None:
    """
    A 401 in any parallel fetch ends the page: re-raise it once.
    The session itself was already torn down by the first client to see it.
    """
    for result in results.values():
        if isinstance(result.error, SessionExpired):
            raise result.error
