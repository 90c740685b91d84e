import asyncio

from draftpilot.core.progress import ProgressSimulator, ProgressSnapshot


def test_advance_is_monotonic_and_capped() -> None:
    simulator = ProgressSimulator(cap=95, min_step=0.5)
    seen: list[float] = []
    for _ in range(500):
        simulator.advance()
        seen.append(simulator.percent)
    assert seen == sorted(seen)
    assert max(seen) <= 95
    assert simulator.percent == 95


def test_phases_follow_thresholds_in_order() -> None:
    phases: list[str] = []

    def listener(snapshot: ProgressSnapshot) -> None:
        if not phases or phases[-1] != snapshot.phase:
            phases.append(snapshot.phase)

    simulator = ProgressSimulator(cap=95, listener=listener)
    for _ in range(200):
        simulator.advance()
    assert phases == ["analyzing", "matching", "tailoring", "finalizing"]


def test_complete_jumps_to_100_and_stops_ticking() -> None:
    async def scenario():
        snapshots: list[ProgressSnapshot] = []
        simulator = ProgressSimulator(tick_ms=5, listener=snapshots.append)
        simulator.start()
        await asyncio.sleep(0.05)
        assert simulator.running
        assert 0 < simulator.percent < 100
        simulator.complete()
        after_complete = len(snapshots)
        await asyncio.sleep(0.03)
        return simulator, snapshots, after_complete

    simulator, snapshots, after_complete = asyncio.run(scenario())
    assert simulator.percent == 100
    assert simulator.phase == "complete"
    assert not simulator.running
    assert len(snapshots) == after_complete


def test_reset_returns_to_idle() -> None:
    async def scenario():
        simulator = ProgressSimulator(tick_ms=5)
        simulator.start()
        await asyncio.sleep(0.02)
        simulator.reset()
        return simulator

    simulator = asyncio.run(scenario())
    assert simulator.percent == 0
    assert simulator.phase == "idle"
    assert not simulator.running


def test_listener_errors_do_not_stop_simulation() -> None:
    def broken(snapshot: ProgressSnapshot) -> None:
        raise RuntimeError("listener bug")

    simulator = ProgressSimulator(listener=broken)
    simulator.advance()
    assert simulator.percent > 0
