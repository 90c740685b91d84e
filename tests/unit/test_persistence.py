import asyncio

from draftpilot.core.persistence import DebouncedPersistenceManager, DocumentSnapshot, fingerprint

CV = {"basics": {"name": "Ada"}}


class Recorder:
    def __init__(self, fail: bool = False):
        self.saved: list[DocumentSnapshot] = []
        self.fail = fail

    async def __call__(self, snapshot: DocumentSnapshot) -> str:
        if self.fail:
            raise RuntimeError("backend unavailable")
        self.saved.append(snapshot)
        return "ok"


def test_fingerprint_ignores_key_order() -> None:
    assert fingerprint({"a": 1, "b": 2}, "x") == fingerprint({"b": 2, "a": 1}, "x")
    assert fingerprint(None, None) == fingerprint(None, "")


def test_burst_of_edits_saves_once_with_latest_content() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=60)
        manager.prime(CV, "")
        manager.on_change(CV, "First draft")
        await asyncio.sleep(0.02)
        manager.on_change(CV, "Second draft")
        assert manager.pending
        await asyncio.sleep(0.12)
        await manager.drain()
        return manager

    manager = asyncio.run(scenario())
    assert [snapshot.cover_letter for snapshot in save.saved] == ["Second draft"]
    assert manager.last_persisted_fingerprint == fingerprint(CV, "Second draft")
    assert not manager.pending


def test_identical_content_issues_no_further_saves() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=10)
        manager.prime(CV, "")
        manager.on_change(CV, "Hello")
        await asyncio.sleep(0.04)
        await manager.drain()
        for _ in range(5):
            manager.on_change(CV, "Hello")
            assert not manager.pending
        await asyncio.sleep(0.04)

    asyncio.run(scenario())
    assert len(save.saved) == 1


def test_reverting_to_saved_content_cancels_timer() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=30)
        manager.prime(CV, "Saved")
        manager.on_change(CV, "Edited")
        manager.on_change(CV, "Saved")
        assert not manager.pending
        await asyncio.sleep(0.06)

    asyncio.run(scenario())
    assert save.saved == []


def test_changes_inside_grace_window_are_skipped() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=10, grace_ms=50)
        manager.prime(CV, "")
        manager.on_change(CV, "Editor normalised")
        assert not manager.pending
        await asyncio.sleep(0.07)
        manager.on_change(CV, "Real edit")
        await asyncio.sleep(0.04)
        await manager.drain()

    asyncio.run(scenario())
    assert [snapshot.cover_letter for snapshot in save.saved] == ["Real edit"]


def test_edit_inside_grace_window_is_saved_by_flush() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=10, grace_ms=500)
        manager.prime(CV, "")
        manager.on_change(CV, "Typed right after load")
        assert not manager.pending
        assert manager.dirty
        return await manager.flush()

    assert asyncio.run(scenario()) is True
    assert [snapshot.cover_letter for snapshot in save.saved] == ["Typed right after load"]


def test_failed_save_keeps_previous_fingerprint() -> None:
    save = Recorder(fail=True)
    errors: list[Exception] = []

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=10, on_error=lambda _, exc: errors.append(exc))
        manager.prime(CV, "")
        primed = manager.last_persisted_fingerprint
        manager.on_change(CV, "Unsaved")
        await asyncio.sleep(0.04)
        await manager.drain()
        assert manager.last_persisted_fingerprint == primed
        assert manager.dirty
        assert not manager.pending

        save.fail = False
        assert await manager.flush()
        return manager

    manager = asyncio.run(scenario())
    assert len(errors) == 1
    assert [snapshot.cover_letter for snapshot in save.saved] == ["Unsaved"]
    assert not manager.dirty


def test_on_saved_receives_save_response() -> None:
    save = Recorder()
    responses = []

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=10, on_saved=lambda snap, resp: responses.append(resp))
        manager.prime(None, None)
        manager.stage(CV, None)
        await manager.flush()

    asyncio.run(scenario())
    assert responses == ["ok"]


def test_flush_without_changes_skips_remote_call() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=10)
        manager.prime(CV, "Saved")
        return await manager.flush()

    assert asyncio.run(scenario()) is True
    assert save.saved == []


def test_mark_saved_adopts_external_content() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=10)
        manager.prime(None, None)
        manager.mark_saved(CV, "From server")
        manager.on_change(CV, "From server")
        await asyncio.sleep(0.03)
        return manager

    manager = asyncio.run(scenario())
    assert save.saved == []
    assert manager.last_persisted_fingerprint == fingerprint(CV, "From server")


def test_dispose_prevents_timer_from_firing() -> None:
    save = Recorder()

    async def scenario():
        manager = DebouncedPersistenceManager(save, delay_ms=20)
        manager.prime(CV, "")
        manager.on_change(CV, "Edit")
        manager.dispose()
        manager.on_change(CV, "Another edit")
        await asyncio.sleep(0.05)
        return manager

    manager = asyncio.run(scenario())
    assert save.saved == []
    assert not manager.pending
