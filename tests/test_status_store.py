from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

import autopilot.status.store as store_module
from autopilot.status.store import StatusStore
from autopilot.status.types import Status


def _read(path: Path) -> dict:
    return json.loads(path.read_text(encoding="utf-8"))


def test_initialize_writes_one_unknown_record_per_job(tmp_path: Path) -> None:
    path = tmp_path / "status.json"
    store = StatusStore(path)

    assert store.initialize([("a", "job_a"), ("b", "job_b"), ("a", "dup")]) is True

    data = _read(path)
    assert set(data) == {"time", "statuses"}
    assert data["time"]
    assert data["statuses"] == [
        {"id": "a", "name": "dup", "status": "Unknown"},
        {"id": "b", "name": "job_b", "status": "Unknown"},
    ]


def test_set_status_updates_and_inserts_records(tmp_path: Path) -> None:
    store = StatusStore(tmp_path / "status.json")
    store.initialize([("a", "job_a")])

    store.set_status("a", "job_a", Status.RUNNING)
    store.set_status("c", "job_c", Status.SUCCESS)

    assert store.get_status("a") is Status.RUNNING
    assert store.get_status("c") is Status.SUCCESS
    assert store.get_status("missing") is Status.UNKNOWN
    assert [r.id for r in store.read().statuses] == ["a", "c"]


def test_reset_sets_every_record(tmp_path: Path) -> None:
    store = StatusStore(tmp_path / "status.json")
    store.initialize([("a", "job_a"), ("b", "job_b")])
    store.set_status("a", "job_a", Status.SUCCESS)

    store.reset()

    assert {r.status for r in store.read().statuses} == {Status.UNKNOWN}


def test_corrupt_file_is_rebuilt_on_next_write(tmp_path: Path) -> None:
    path = tmp_path / "status.json"
    store = StatusStore(path)
    store.initialize([("a", "job_a")])

    path.write_text("{ not json", encoding="utf-8")
    assert store.read().get("a") is not None

    store.set_status("a", "job_a", Status.RUNNING)
    assert _read(path)["statuses"] == [{"id": "a", "name": "job_a", "status": "Running"}]


def test_undecodable_file_is_rebuilt_on_next_write(tmp_path: Path) -> None:
    path = tmp_path / "status.json"
    path.write_bytes(b"\xff\xfe garbage")
    store = StatusStore(path)

    assert store.get_status("j1") is Status.UNKNOWN
    assert store.set_status("j1", "job_j1", Status.RUNNING) is True
    assert _read(path)["statuses"] == [{"id": "j1", "name": "job_j1", "status": "Running"}]


def test_unknown_status_strings_read_as_unknown(tmp_path: Path) -> None:
    path = tmp_path / "status.json"
    path.write_text(
        json.dumps({"time": "t", "statuses": [{"id": "a", "name": "x", "status": "Completed"}]}),
        encoding="utf-8",
    )
    assert StatusStore(path).get_status("a") is Status.UNKNOWN


def test_failed_write_is_kept_pending_and_retried(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "status.json"
    store = StatusStore(path)
    store.initialize([("a", "job_a"), ("b", "job_b")])

    real_write = store_module.write_json_atomic
    failures = iter([True])

    def flaky_write(target, data):
        if next(failures, False):
            raise OSError("disk full")
        real_write(target, data)

    monkeypatch.setattr(store_module, "write_json_atomic", flaky_write)

    assert store.set_status("a", "job_a", Status.SUCCESS) is False
    assert store.pending is not None
    assert StatusStore(path).get_status("a") is Status.UNKNOWN

    assert store.set_status("b", "job_b", Status.RUNNING) is True
    assert store.pending is None

    fresh = StatusStore(path)
    assert fresh.get_status("a") is Status.SUCCESS
    assert fresh.get_status("b") is Status.RUNNING


def test_concurrent_writers_never_tear_the_file(tmp_path: Path) -> None:
    path = tmp_path / "status.json"
    store = StatusStore(path)
    ids = [f"job-{n}" for n in range(6)]
    store.initialize([(i, i) for i in ids])

    statuses = [Status.RUNNING, Status.UNSATISFIED, Status.SUCCESS]
    errors: list[Exception] = []

    def writer(job_id: str) -> None:
        try:
            for n in range(30):
                store.set_status(job_id, job_id, statuses[n % len(statuses)])
                _read(path)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=writer, args=(i,)) for i in ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    data = _read(path)
    assert sorted(r["id"] for r in data["statuses"]) == sorted(ids)
    assert {r["status"] for r in data["statuses"]} == {Status.SUCCESS.value}
    assert not list(tmp_path.glob("*.tmp"))
