"""
Job file IO.

One job per *.json file in the jobs directory. A broken file is logged
and skipped; it never prevents the remaining jobs from loading.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from autopilot.errors import InvalidJobError
from autopilot.job.model import Job, build_job
from autopilot.utils.helpers import safe_filename, write_json_atomic


JOB_FILE_SUFFIX = ".json"


def job_files(jobs_dir: Path) -> list[Path]:
    if not jobs_dir.is_dir():
        return []
    return sorted(p for p in jobs_dir.iterdir() if p.is_file() and p.suffix == JOB_FILE_SUFFIX)


def load_job_file(path: Path) -> Job:
    try:
        with path.open("r", encoding="utf-8") as fh:
            raw = json.load(fh)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidJobError(f"Invalid JSON: {e}") from e
    return build_job(raw)


def load_jobs(jobs_dir: Path, quiet: bool = False) -> list[Job]:
    """Load every job file; duplicate ids keep the first file seen."""
    jobs: list[Job] = []
    seen: set[str] = set()

    for path in job_files(jobs_dir):
        try:
            job = load_job_file(path)
        except (InvalidJobError, OSError) as e:
            logger.error("Failed to load job | path={} err={}", path, e)
            continue

        if job.id in seen:
            logger.warning("Duplicate job id '{}' ignored | path={}", job.id, path)
            continue

        seen.add(job.id)
        jobs.append(job)
        if not quiet:
            logger.info("Loaded job | {}", job.label)

    return jobs


def new_job_id(taken: Iterable[str] = ()) -> str:
    """job_<unix seconds>, suffixed when that id already exists."""
    taken = set(taken)
    base = f"job_{int(time.time())}"
    candidate, n = base, 1
    while candidate in taken:
        candidate = f"{base}_{n}"
        n += 1
    return candidate


def create_job_file(jobs_dir: Path, record: dict[str, Any]) -> tuple[Job, Path]:
    """
    Validate and persist a new job, assigning a fresh id.

    The record must not carry an id; one is generated and never reused
    while its file exists.
    """
    existing = {p.stem.split("__", 1)[0] for p in job_files(jobs_dir)}
    existing |= {j.id for j in load_jobs(jobs_dir, quiet=True)}

    data = dict(record)
    data["id"] = new_job_id(existing)
    job = build_job(data)

    stem = job.id if not record.get("name") else f"{job.id}__{safe_filename(job.name)}"
    path = jobs_dir / f"{stem}{JOB_FILE_SUFFIX}"
    write_json_atomic(path, job.to_record())

    logger.info("Job created | {} path={}", job.label, path)
    return job, path


def find_job_file(jobs_dir: Path, job_id: str) -> Optional[Path]:
    for path in job_files(jobs_dir):
        try:
            if load_job_file(path).id == job_id:
                return path
        except (InvalidJobError, OSError):
            continue
    return None


def remove_job_file(jobs_dir: Path, job_id: str) -> bool:
    path = find_job_file(jobs_dir, job_id)
    if path is None:
        return False
    path.unlink()
    logger.info("Job removed | id={} path={}", job_id, path)
    return True
