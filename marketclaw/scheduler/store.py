"""Whole-file JSON persistence for scheduled jobs."""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable

from loguru import logger
from pydantic import ValidationError

from marketclaw.errors import StoreCorruptError, StoreWriteError
from marketclaw.scheduler.types import ScheduledJob

STORE_FILENAME = "scheduler.json"


class JobStore:
    """
    Durable list of jobs as a single JSON array.

    The file is loaded wholesale and rewritten wholesale. Writes go through a
    single lock and each write snapshots the collection it is given at the
    moment it holds the lock, so interleaved callers never persist a stale
    view over a newer one.
    """

    def __init__(self, workspace: Path):
        self.path = Path(workspace) / STORE_FILENAME
        self._lock = asyncio.Lock()
        self.dirty = False

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> list[ScheduledJob]:
        """Read all jobs. A missing file is an empty store."""
        if not self.path.exists():
            return []

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise StoreCorruptError(f"Job store {self.path} is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise StoreCorruptError(f"Job store {self.path} must contain a JSON array")

        try:
            jobs = [ScheduledJob.model_validate(record) for record in data]
        except ValidationError as e:
            raise StoreCorruptError(f"Job store {self.path} has an invalid job: {e}") from e

        logger.debug(f"Loaded {len(jobs)} jobs from {self.path}")
        return jobs

    async def save(self, snapshot: Callable[[], Iterable[ScheduledJob]]) -> None:
        """Persist the collection returned by ``snapshot``.

        ``snapshot`` is called while holding the write lock. On failure the
        store stays dirty and ``StoreWriteError`` is raised; the next save
        writes the complete current state again.
        """
        async with self._lock:
            records = [job.to_record() for job in snapshot()]
            self.dirty = True
            try:
                await asyncio.to_thread(self._write, records)
            except OSError as e:
                logger.error(f"Failed to save job store {self.path}: {e}")
                raise StoreWriteError(f"Failed to save job store {self.path}: {e}") from e
            self.dirty = False

    def _write(self, records: list[dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
