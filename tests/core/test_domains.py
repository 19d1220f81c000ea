"""Tests for ezstore.core.domains: execution domains and pending results."""

from __future__ import annotations

import threading

import pytest

from ezstore.core.domains import ExecutionDomain, PendingResult, submit_request
from ezstore.core.errors import QueryError, RequestCancelledError, StoreError, SubmissionError
from ezstore.core.result import Err, Ok


@pytest.fixture
def domain():
    d = ExecutionDomain("test")
    yield d
    d.shutdown(wait=True)


class TestExecutionDomain:
    def test_run_returns_value(self, domain):
        assert domain.run(lambda: 21 * 2) == 42

    def test_run_executes_on_domain_thread(self, domain):
        name = domain.run(lambda: threading.current_thread().name)
        assert name.startswith("ezstore-test")
        assert name != threading.current_thread().name

    def test_in_domain(self, domain):
        assert domain.in_domain() is False
        assert domain.run(domain.in_domain) is True

    def test_nested_run_is_inline(self, domain):
        """A run issued from the domain thread must not deadlock."""
        assert domain.run(lambda: domain.run(lambda: "inner")) == "inner"

    def test_run_propagates_exceptions(self, domain):
        def boom():
            raise ValueError("nope")

        with pytest.raises(ValueError, match="nope"):
            domain.run(boom)

    def test_submit_after_shutdown(self):
        d = ExecutionDomain("closed")
        d.shutdown()
        assert d.closed is True
        with pytest.raises(SubmissionError) as exc_info:
            d.submit(lambda: 1)
        assert exc_info.value.context.domain == "closed"

    def test_context_manager_shuts_down(self):
        with ExecutionDomain("scoped") as d:
            assert d.run(lambda: 1) == 1
        assert d.closed is True


class TestSubmitRequest:
    def test_ok_delivered_to_completion(self, domain):
        received = []
        done = threading.Event()

        def completion(result):
            received.append((result, threading.current_thread().name))
            done.set()

        pending = submit_request(domain, lambda: [1, 2], completion)
        assert done.wait(5)
        result, thread_name = received[0]
        assert result == Ok([1, 2])
        assert thread_name.startswith("ezstore-test")
        assert pending.result(5) == Ok([1, 2])

    def test_instant_requests_complete_on_domain_thread(self, domain):
        threads = []
        pendings = [
            submit_request(domain, lambda: None, lambda r: threads.append(threading.current_thread().name))
            for _ in range(50)
        ]
        # The domain is serial; this returns once every completion above has run
        domain.run(lambda: None)
        assert all(p.done() for p in pendings)
        assert len(threads) == 50
        assert all(name.startswith("ezstore-test") for name in threads)

    def test_result_without_completion(self, domain):
        assert submit_request(domain, lambda: "x").result(5).unwrap() == "x"

    def test_foreign_exception_wrapped(self, domain):
        def fail():
            raise RuntimeError("disk I/O error")

        result = submit_request(domain, fail, error_type=QueryError).result(5)
        assert isinstance(result, Err)
        assert isinstance(result.error, QueryError)
        assert result.error.native_message == "disk I/O error"

    def test_store_error_passed_through(self, domain):
        error = StoreError("already typed")

        def fail():
            raise error

        assert submit_request(domain, fail).result(5).error is error

    def test_submission_failure_delivered_on_caller_thread(self):
        d = ExecutionDomain("gone")
        d.shutdown()
        received = []
        pending = submit_request(d, lambda: 1, lambda r: received.append((r, threading.get_ident())))
        assert pending.done() is True
        result, ident = received[0]
        assert isinstance(result.error, SubmissionError)
        assert ident == threading.get_ident()

    def test_exactly_one_delivery(self, domain):
        calls = []
        delivered = threading.Event()

        def completion(result):
            calls.append(result)
            delivered.set()

        pending = submit_request(domain, lambda: 1, completion)
        assert delivered.wait(5)
        pending._resolve(Ok(2))
        assert calls == [Ok(1)]
        assert pending.result() == Ok(1)

    def test_completion_can_read_result(self, domain):
        seen = []
        holder = {}

        def completion(result):
            seen.append(holder["pending"].result(0))

        gate = threading.Event()
        domain.submit(gate.wait)
        holder["pending"] = submit_request(domain, lambda: "v", completion)
        gate.set()
        holder["pending"].result(5)
        assert seen == [Ok("v")]

    def test_completion_failure_does_not_break_delivery(self, domain):
        def completion(result):
            raise RuntimeError("callback bug")

        assert submit_request(domain, lambda: 3, completion).result(5) == Ok(3)


class TestCancellation:
    def test_cancel_before_start(self, domain):
        gate = threading.Event()
        blocker = domain.submit(gate.wait)
        received = []
        pending = submit_request(domain, lambda: "never", received.append, label="fetch Article")

        assert pending.cancel() is True
        gate.set()
        blocker.result(5)

        result = pending.result(5)
        assert isinstance(result.error, RequestCancelledError)
        assert pending.cancelled() is True
        assert received == [result]

    def test_cancel_after_completion_is_noop(self, domain):
        pending = submit_request(domain, lambda: 1)
        pending.result(5)
        assert pending.cancel() is False
        assert pending.result() == Ok(1)
        assert pending.cancelled() is False

    def test_running_request_completes(self, domain):
        started, release = threading.Event(), threading.Event()

        def work():
            started.set()
            release.wait(5)
            return "finished"

        pending = submit_request(domain, work)
        assert started.wait(5)
        assert pending.cancel() is False
        release.set()
        assert pending.result(5) == Ok("finished")

    def test_result_timeout(self, domain):
        gate = threading.Event()
        pending = submit_request(domain, lambda: gate.wait(5))
        with pytest.raises(TimeoutError):
            pending.result(0.01)
        gate.set()
        pending.result(5)

    def test_unsubmitted_cannot_cancel(self):
        assert PendingResult().cancel() is False
