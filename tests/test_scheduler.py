from __future__ import annotations

from irpro.core.bounded import BoundedCall, CompletionLatch
from irpro.errors import TransientNetworkError


class Outcome:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def success(self, value: object) -> None:
        self.events.append(("success", value))

    def failure(self, exc: Exception) -> None:
        self.events.append(("failure", exc))

    def timeout(self) -> None:
        self.events.append(("timeout", None))


def bounded(scheduler, fn, timeout=3.0):
    outcome = Outcome()
    call = BoundedCall(
        scheduler,
        fn,
        timeout,
        on_success=outcome.success,
        on_failure=outcome.failure,
        on_timeout=outcome.timeout,
    )
    return call, outcome


def test_timers_fire_in_due_order(scheduler):
    fired = []
    scheduler.call_later(2, lambda: fired.append("b"))
    scheduler.call_later(1, lambda: fired.append("a"))
    cancelled = scheduler.call_later(1.5, lambda: fired.append("x"))
    cancelled.cancel()

    scheduler.advance(1)
    assert fired == ["a"]
    scheduler.advance(1)
    assert fired == ["a", "b"]
    assert scheduler.monotonic() == 2


def test_jobs_submitted_by_timers_run_before_next_timer(scheduler):
    order = []
    scheduler.call_later(1, lambda: scheduler.submit(lambda: order.append("job")))
    scheduler.call_later(1, lambda: order.append("timer"))

    scheduler.advance(1)
    assert order == ["job", "timer"]


def test_sleep_moves_clock_without_firing(scheduler):
    fired = []
    scheduler.call_later(1, lambda: fired.append(1))
    scheduler.sleep(5)
    assert fired == []
    assert scheduler.monotonic() == 5


def test_latch_finishes_once():
    latch = CompletionLatch()
    assert latch.finish()
    assert not latch.finish()
    assert latch.finished


def test_bounded_call_success_cancels_deadline(scheduler):
    call, outcome = bounded(scheduler, lambda: 42)
    call.start()
    scheduler.advance(10)

    assert outcome.events == [("success", 42)]
    assert scheduler.pending_timers == 0


def test_bounded_call_failure(scheduler):
    def boom():
        raise TransientNetworkError("down")

    call, outcome = bounded(scheduler, boom)
    call.start()
    scheduler.run_pending()

    [(kind, exc)] = outcome.events
    assert kind == "failure"
    assert isinstance(exc, TransientNetworkError)


def test_late_result_after_deadline_is_dropped(scheduler):
    def slow():
        # the deadline passes while the call is still running
        scheduler.advance(5)
        return "late"

    call, outcome = bounded(scheduler, slow)
    call.start()
    scheduler.run_pending()

    assert outcome.events == [("timeout", None)]
    assert call.finished


def test_cancelled_call_reports_nothing(scheduler):
    call, outcome = bounded(scheduler, lambda: 1)
    call.start()
    assert call.cancel()
    assert not call.cancel()

    scheduler.advance(10)
    assert outcome.events == []

