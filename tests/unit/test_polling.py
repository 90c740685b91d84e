import asyncio

from draftpilot.core.polling import PollingTaskRunner, PollOutcomeKind, PollPolicy, poll


def _policy(**overrides) -> PollPolicy:
    values = {
        "interval_ms": 10,
        "timeout_ms": 100,
        "is_complete": lambda result: result == "done",
        "failure_of": lambda result: "boom" if result == "failed" else None,
    }
    values.update(overrides)
    return PollPolicy(**values)


def _scripted(*results):
    calls: list[str] = []
    queue = list(results)

    async def check(task_id: str):
        calls.append(task_id)
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    return check, calls


def test_poll_completes_on_terminal_result() -> None:
    check, calls = _scripted("running", "running", "done")
    outcome = asyncio.run(poll("t1", check, _policy()))
    assert outcome.kind is PollOutcomeKind.COMPLETED
    assert outcome.result == "done"
    assert outcome.attempts == 3
    assert calls == ["t1", "t1", "t1"]


def test_poll_reports_failure() -> None:
    check, _ = _scripted("running", "failed")
    outcome = asyncio.run(poll("t1", check, _policy()))
    assert outcome.kind is PollOutcomeKind.FAILED
    assert outcome.error == "boom"


def test_poll_times_out_instead_of_hanging() -> None:
    check, calls = _scripted("running")
    outcome = asyncio.run(poll("t1", check, _policy(interval_ms=10, timeout_ms=60)))
    assert outcome.kind is PollOutcomeKind.TIMED_OUT
    assert outcome.result is None
    # Stops within one interval of the deadline.
    assert 60 <= outcome.elapsed_ms < 60 + 10 + 50
    assert len(calls) >= 2


def test_check_errors_are_transient() -> None:
    check, _ = _scripted(RuntimeError("network down"), "running", "done")
    outcome = asyncio.run(poll("t1", check, _policy()))
    assert outcome.kind is PollOutcomeKind.COMPLETED
    assert outcome.attempts == 3


def test_first_check_runs_immediately() -> None:
    check, _ = _scripted("done")
    outcome = asyncio.run(poll("t1", check, _policy(interval_ms=5000, timeout_ms=10000)))
    assert outcome.kind is PollOutcomeKind.COMPLETED
    assert outcome.attempts == 1


def test_runner_delivers_outcome() -> None:
    delivered = []

    async def scenario():
        runner = PollingTaskRunner("scan")
        check, _ = _scripted("running", "done")
        handle = runner.start("t1", check, _policy(), on_outcome=delivered.append)
        outcome = await handle.wait()
        await asyncio.sleep(0)
        return runner, outcome

    runner, outcome = asyncio.run(scenario())
    assert outcome.kind is PollOutcomeKind.COMPLETED
    assert [item.kind for item in delivered] == [PollOutcomeKind.COMPLETED]
    assert runner.current is None


def test_starting_again_cancels_previous_poller() -> None:
    delivered = []

    async def scenario():
        runner = PollingTaskRunner("scan")
        first_check, first_calls = _scripted("running")
        second_check, _ = _scripted("running", "done")
        first = runner.start("t1", first_check, _policy(timeout_ms=1000), on_outcome=delivered.append)
        await asyncio.sleep(0.02)
        second = runner.start("t2", second_check, _policy(), on_outcome=delivered.append)
        assert first.cancelled
        assert runner.current is second
        first_outcome = await first.wait()
        second_outcome = await second.wait()
        calls_after_cancel = len(first_calls)
        await asyncio.sleep(0.05)
        return first_outcome, second_outcome, calls_after_cancel, len(first_calls)

    first_outcome, second_outcome, calls_after_cancel, final_calls = asyncio.run(scenario())
    assert first_outcome.kind is PollOutcomeKind.CANCELLED
    assert second_outcome.kind is PollOutcomeKind.COMPLETED
    assert [item.task_id for item in delivered] == ["t2"]
    assert final_calls == calls_after_cancel


def test_many_submissions_leave_one_live_poller() -> None:
    async def scenario():
        runner = PollingTaskRunner("scan")
        handles = []
        for index in range(5):
            check, _ = _scripted("running")
            handles.append(runner.start(f"t{index}", check, _policy(timeout_ms=1000)))
            await asyncio.sleep(0)
            live = [handle for handle in handles if not handle.cancelled and not handle.done]
            assert len(live) == 1
        runner.cancel()
        await asyncio.sleep(0)
        return handles, runner

    handles, runner = asyncio.run(scenario())
    assert all(handle.cancelled for handle in handles)
    assert not runner.active


def test_result_arriving_after_cancel_is_dropped() -> None:
    delivered = []

    async def scenario():
        runner = PollingTaskRunner("analysis")
        release = asyncio.Event()

        async def slow_check(task_id: str) -> str:
            await release.wait()
            return "done"

        handle = runner.start("t1", slow_check, _policy(), on_outcome=delivered.append)
        await asyncio.sleep(0)
        handle.cancel()
        release.set()
        return await handle.wait()

    outcome = asyncio.run(scenario())
    assert outcome.kind is PollOutcomeKind.CANCELLED
    assert delivered == []


def test_crashing_predicate_is_delivered_as_failure() -> None:
    delivered = []

    def broken_is_complete(result) -> bool:
        raise KeyError("score")

    async def scenario():
        runner = PollingTaskRunner("scan")
        check, _ = _scripted("running")
        handle = runner.start("t1", check, _policy(is_complete=broken_is_complete), on_outcome=delivered.append)
        outcome = await handle.wait()
        await asyncio.sleep(0)
        return runner, outcome

    runner, outcome = asyncio.run(scenario())
    assert outcome.kind is PollOutcomeKind.FAILED
    assert "score" in outcome.error
    assert [item.kind for item in delivered] == [PollOutcomeKind.FAILED]
    assert not runner.active
