from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path

import pytest

import autopilot.runtime.autopilot as runtime_module
from autopilot.conditions.evaluator import LeafResolver
from autopilot.conditions.types import LeafKind
from autopilot.config.schema import Config, DaemonConfig, PathsConfig
from autopilot.runtime.autopilot import AutoPilot
from autopilot.status.store import StatusStore
from autopilot.status.types import Status


def _config(root: Path) -> Config:
    return Config(
        paths=PathsConfig(root=str(root)),
        daemon=DaemonConfig(tick_interval_s=0.05),
    )


def _resolver() -> LeafResolver:
    # variable leaves answer with their "target" param: "yes" holds
    return LeafResolver({LeafKind.VARIABLE: lambda p: p.get("target") == "yes"})


def _write_job(root: Path, job_id: str, target: str, **extra: object) -> Path:
    jobs_dir = root / "jobs"
    jobs_dir.mkdir(parents=True, exist_ok=True)
    record = {
        "id": job_id,
        "conditions": [{"type": "variable", "condition": {"variable": "X", "target": target}}],
        "tasks": [{"command": "true"}],
    }
    record.update(extra)
    path = jobs_dir / f"{job_id}.json"
    path.write_text(json.dumps(record), encoding="utf-8")
    return path


def _statuses(root: Path) -> dict[str, str]:
    data = json.loads((root / "status.json").read_text(encoding="utf-8"))
    return {r["id"]: r["status"] for r in data["statuses"]}


def test_start_runs_untriggered_jobs(tmp_path: Path) -> None:
    _write_job(tmp_path, "ready", "yes")
    _write_job(tmp_path, "blocked", "no")

    async def scenario() -> dict[str, str]:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        await pilot.start()
        await pilot.wait()
        statuses = _statuses(tmp_path)
        await pilot.stop(reset_status=False)
        return statuses

    statuses = asyncio.run(scenario())
    assert statuses == {"ready": Status.SUCCESS.value, "blocked": Status.UNSATISFIED.value}
    assert (tmp_path / "logs").is_dir()


def test_stop_cancels_polling_jobs_and_keeps_a_valid_snapshot(tmp_path: Path) -> None:
    _write_job(tmp_path, "p1", "no", check_interval=20)
    _write_job(tmp_path, "p2", "no", check_interval="30")

    async def scenario() -> bool:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        await pilot.start()
        await asyncio.sleep(0.2)
        await pilot.stop(reset_status=False)
        return pilot.running

    assert asyncio.run(scenario()) is False
    assert _statuses(tmp_path) == {"p1": Status.RUNNING.value, "p2": Status.RUNNING.value}


def test_stop_resets_statuses_by_default(tmp_path: Path) -> None:
    _write_job(tmp_path, "ready", "yes")
    _write_job(tmp_path, "nightly", "yes", when={"type": "cron", "trigger": "0 3 * * *"})

    async def scenario() -> dict[str, str]:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        await pilot.start()
        await pilot.wait()
        before = _statuses(tmp_path)
        await pilot.stop()
        return before

    before = asyncio.run(scenario())
    assert before == {"ready": Status.SUCCESS.value, "nightly": Status.PENDING.value}
    assert set(_statuses(tmp_path).values()) == {Status.UNKNOWN.value}


def test_broken_schedule_does_not_affect_other_jobs(tmp_path: Path) -> None:
    _write_job(tmp_path, "ready", "yes")
    _write_job(tmp_path, "late", "yes", when={"type": "once", "trigger": {"date": "2001/01/01", "time": "00:00"}})

    async def scenario() -> dict[str, str]:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        await pilot.start()
        await pilot.wait()
        statuses = _statuses(tmp_path)
        await pilot.stop(reset_status=False)
        return statuses

    assert asyncio.run(scenario()) == {"ready": Status.SUCCESS.value, "late": Status.UNKNOWN.value}


def test_reload_picks_up_new_job_files(tmp_path: Path) -> None:
    _write_job(tmp_path, "first", "yes")

    async def scenario() -> list[str]:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        await pilot.start()
        await pilot.wait()

        _write_job(tmp_path, "second", "yes")
        await pilot.reload()
        await pilot.wait()
        ids = sorted(pilot.jobs)
        await pilot.stop(reset_status=False)
        return ids

    assert asyncio.run(scenario()) == ["first", "second"]
    assert _statuses(tmp_path) == {"first": Status.SUCCESS.value, "second": Status.SUCCESS.value}


def test_serve_returns_after_stop(tmp_path: Path) -> None:
    _write_job(tmp_path, "ready", "yes")

    async def scenario() -> bool:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        server = asyncio.create_task(pilot.serve())
        await asyncio.sleep(0.3)
        assert pilot.running
        await pilot.stop()
        await asyncio.wait_for(server, timeout=2)
        return pilot.running

    assert asyncio.run(scenario()) is False


class SlowStore(StatusStore):
    """Store whose job transitions take a while to reach the disk."""

    def set_status(self, job_id: str, name: str, status: Status) -> bool:
        time.sleep(0.3)
        return super().set_status(job_id, name, status)


def test_stop_waits_for_writes_from_cancelled_jobs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(runtime_module, "StatusStore", SlowStore)
    _write_job(tmp_path, "p1", "no", check_interval=20)

    async def scenario() -> None:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        await pilot.start()
        await asyncio.sleep(0.05)
        await pilot.stop()

    asyncio.run(scenario())
    assert _statuses(tmp_path) == {"p1": Status.UNKNOWN.value}


def test_reload_drops_records_of_removed_jobs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(runtime_module, "StatusStore", SlowStore)
    _write_job(tmp_path, "keep", "no", check_interval=20)
    gone = _write_job(tmp_path, "gone", "no", check_interval=20)

    async def scenario() -> None:
        pilot = AutoPilot(_config(tmp_path), resolver=_resolver())
        await pilot.start()
        await asyncio.sleep(0.05)
        gone.unlink()
        await pilot.reload()
        await pilot.stop(reset_status=False)

    asyncio.run(scenario())
    assert set(_statuses(tmp_path)) == {"keep"}
