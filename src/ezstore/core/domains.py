"""
Execution domains and single-resolution pending results.

A context is confined to one ``ExecutionDomain``: a single worker thread that
runs every store operation for the contexts bound to it. Blocking calls hop
onto the domain and wait (or run inline when already there); non-blocking
calls return a ``PendingResult`` that resolves exactly once to ``Ok`` or
``Err``.

ARCHITECTURE
────────────
::

    ExecutionDomain("main")           ThreadPoolExecutor(max_workers=1)
      ├── .run(fn)        ─ inline if on the domain thread, else submit + wait
      ├── .submit(fn)     ─ Future, or SubmissionError after shutdown
      └── .shutdown()     ─ drain pool

    submit_request(domain, fn, completion)
      └── PendingResult
            ├── .result(timeout) ─ wait for the Ok/Err envelope
            ├── .done()
            └── .cancel()        ─ only before the request starts

Tags:
    ezstore, execution, thread-confinement, futures, cancellation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Generic, TypeVar

from ezstore.core.errors import (
    EzStoreError,
    RequestCancelledError,
    StoreError,
    SubmissionError,
    as_store_error,
)
from ezstore.core.logging import get_logger
from ezstore.core.result import Err, Ok, Result

logger = get_logger(__name__)

T = TypeVar("T")


class ExecutionDomain:
    """A single-threaded confinement domain.

    Example:
        >>> with ExecutionDomain("background") as domain:
        ...     domain.run(lambda: 2 + 2)
        4
    """

    def __init__(self, name: str):
        self.name = name
        self._thread_ident: int | None = None
        self._closed = False
        self._pool = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"ezstore-{name}",
            initializer=self._mark_thread,
        )

    def _mark_thread(self) -> None:
        self._thread_ident = threading.get_ident()

    @property
    def closed(self) -> bool:
        return self._closed

    def in_domain(self) -> bool:
        """True when called from this domain's worker thread."""
        return self._thread_ident is not None and threading.get_ident() == self._thread_ident

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        """Enqueue *fn*. Raises ``SubmissionError`` if the domain is shut down."""
        try:
            return self._pool.submit(fn)
        except RuntimeError as exc:
            raise SubmissionError(
                f"execution domain {self.name!r} is not accepting work", cause=exc
            ).with_context(domain=self.name) from exc

    def run(self, fn: Callable[[], T]) -> T:
        """Run *fn* on this domain and return its value, propagating exceptions."""
        if self.in_domain():
            return fn()
        return self.submit(fn).result()

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._pool.shutdown(wait=wait)
        logger.debug("domain_shutdown", domain=self.name)

    def __enter__(self) -> ExecutionDomain:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)

    def __repr__(self) -> str:
        return f"ExecutionDomain({self.name!r})"


class PendingResult(Generic[T]):
    """Single-resolution channel for a non-blocking request.

    The envelope is set before the completion callback is invoked, so a
    completion may call ``result()`` without blocking.
    """

    def __init__(self, completion: Callable[[Result[T]], Any] | None = None, *, label: str = "request"):
        self._completion = completion
        self._label = label
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._envelope: Result[T] | None = None
        self._future: Future | None = None

    def _attach(self, future: Future) -> None:
        self._future = future
        future.add_done_callback(self._on_future_done)

    def _on_future_done(self, future: Future) -> None:
        # Outcomes of started requests are resolved by the worker itself
        if future.cancelled():
            self._resolve(Err(RequestCancelledError(f"{self._label} was cancelled before it started")))

    def _resolve(self, envelope: Result[T]) -> None:
        with self._lock:
            if self._envelope is not None:
                return
            self._envelope = envelope
        self._event.set()
        if self._completion is not None:
            try:
                self._completion(envelope)
            except Exception:
                logger.exception("completion_failed", request=self._label)

    def done(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> bool:
        """Cancel the request if it has not started yet.

        On success the request resolves to ``Err(RequestCancelledError)``. A
        running or finished request is unaffected and ``False`` is returned.
        """
        if self._future is None:
            return False
        return self._future.cancel()

    def cancelled(self) -> bool:
        return isinstance(self._envelope, Err) and isinstance(self._envelope.error, RequestCancelledError)

    def result(self, timeout: float | None = None) -> Result[T]:
        """Wait for and return the envelope. Raises ``TimeoutError`` on timeout."""
        if not self._event.wait(timeout):
            raise TimeoutError(f"{self._label} did not complete within {timeout}s")
        return self._envelope  # type: ignore[return-value]

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"PendingResult({self._label!r}, {state})"


def submit_request(
    domain: ExecutionDomain,
    fn: Callable[[], T],
    completion: Callable[[Result[T]], Any] | None = None,
    *,
    label: str = "request",
    error_type: type[StoreError] = StoreError,
) -> PendingResult[T]:
    """Run *fn* on *domain* and deliver its outcome as ``Ok``/``Err`` exactly once.

    The outcome is resolved, and the completion invoked, on the domain's
    thread. Exceptions other than ``EzStoreError`` are wrapped in
    *error_type*. If the request cannot be enqueued, ``Err(SubmissionError)``
    is delivered immediately on the caller's thread.
    """
    pending: PendingResult[T] = PendingResult(completion, label=label)

    def _work() -> None:
        try:
            value = fn()
        except EzStoreError as exc:
            pending._resolve(Err(exc))
        except Exception as exc:
            pending._resolve(Err(as_store_error(exc, error_type=error_type)))
        else:
            pending._resolve(Ok(value))

    try:
        future = domain.submit(_work)
    except SubmissionError as exc:
        logger.warning("request_not_submitted", request=label, domain=domain.name, error=str(exc))
        pending._resolve(Err(exc))
        return pending
    pending._attach(future)
    return pending


__all__ = [
    "ExecutionDomain",
    "PendingResult",
    "submit_request",
]
