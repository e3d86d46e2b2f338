"""Persistent caches for job paths, submit scripts and pinned jobs."""
from __future__ import annotations

import abc
import json
import logging
import os
import re
import shutil
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

logger = logging.getLogger(__name__)

DAY = 24 * 60 * 60

Clock = Callable[[], float]


class KeyValueStore(Protocol):
    """Storage backend that persists whole cache maps under a logical name."""

    def load_all(self, name: str) -> dict:
        ...

    def save_all(self, name: str, data: dict) -> None:
        ...


class JsonFileStore:
    """Keep each cache as `<directory>/<name>.json`."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.json"

    def load_all(self, name: str) -> dict:
        path = self._path(name)
        if not path.exists():
            return {}
        try:
            with path.open() as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Failed to load cache %s: %s", name, e)
            return {}
        return data if isinstance(data, dict) else {}

    def save_all(self, name: str, data: dict) -> None:
        path = self._path(name)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)


class MemoryStore:
    """In-process store, for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, dict]] = None):
        self.data: Dict[str, dict] = {k: dict(v) for k, v in (initial or {}).items()}

    def load_all(self, name: str) -> dict:
        return json.loads(json.dumps(self.data.get(name, {})))

    def save_all(self, name: str, data: dict) -> None:
        self.data[name] = json.loads(json.dumps(data))


def _is_unresolved(path: Optional[str]) -> bool:
    return not path or path == "N/A"


class _PersistentMap(abc.ABC):
    """Shared load/save plumbing for the caches below."""

    cache_key = ""

    def __init__(self, store: KeyValueStore, clock: Clock = time.time):
        self.store = store
        self.clock = clock
        self._lock = threading.Lock()

    def _load(self) -> dict:
        try:
            return self.store.load_all(self.cache_key)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to load %s: %s", self.cache_key, e)
            return {}

    def _save(self, data: dict) -> None:
        try:
            self.store.save_all(self.cache_key, data)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save %s: %s", self.cache_key, e)

    @abc.abstractmethod
    def _persist(self) -> None:
        """Write the in-memory entries to the store."""

    def flush(self) -> None:
        """Write the current state to the store."""
        with self._lock:
            self._persist()


@dataclass
class CachedJobPaths:
    stdout_path: str
    stderr_path: str
    cached_at: float


class JobPathCache(_PersistentMap):
    """
    Remember stdout/stderr paths of jobs seen while active.

    sacct does not report output paths, so history views rely on this.
    """

    cache_key = "slurmJobPathCache"
    max_age_days = 30

    def __init__(self, store: KeyValueStore, clock: Clock = time.time):
        super().__init__(store, clock)
        self._cache: Dict[str, CachedJobPaths] = {}
        for job_id, raw in self._load().items():
            try:
                self._cache[job_id] = CachedJobPaths(**raw)
            except TypeError:
                logger.warning("Dropping malformed path cache entry for job %s", job_id)
        self._cleanup_old_entries()

    def _persist(self) -> None:
        self._save({k: asdict(v) for k, v in self._cache.items()})

    def _cleanup_old_entries(self) -> None:
        cutoff = self.clock() - self.max_age_days * DAY
        stale = [k for k, v in self._cache.items() if v.cached_at < cutoff]
        for job_id in stale:
            del self._cache[job_id]
        if stale:
            self._persist()

    def get(self, job_id: str) -> Optional[CachedJobPaths]:
        return self._cache.get(job_id)

    def set(self, job_id: str, stdout_path: str, stderr_path: str) -> None:
        """Cache paths for a job; ignored when neither path is known."""
        if _is_unresolved(stdout_path) and _is_unresolved(stderr_path):
            return

        with self._lock:
            self._cache[job_id] = CachedJobPaths(
                stdout_path=stdout_path or "N/A",
                stderr_path=stderr_path or "N/A",
                cached_at=self.clock(),
            )
            self._persist()

    def has(self, job_id: str) -> bool:
        return job_id in self._cache

    @property
    def size(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._persist()


@dataclass
class CachedSubmitScript:
    original_path: str
    cached_path: str
    cached_at: float


class SubmitScriptCache(_PersistentMap):
    """
    Keep a copy of each job's submit script as it was at submission time.

    Users often edit a script after submitting it; the copy shows what the
    job actually ran. Files live in `<cache_dir>/submit-scripts`.
    """

    cache_key = "slurmSubmitScriptCache"
    cache_dir_name = "submit-scripts"
    max_age_days = 30

    def __init__(self, store: KeyValueStore, cache_dir: Path, clock: Clock = time.time):
        super().__init__(store, clock)
        self.cache_dir = Path(cache_dir) / self.cache_dir_name
        self._cache: Dict[str, CachedSubmitScript] = {}
        for job_id, raw in self._load().items():
            try:
                self._cache[job_id] = CachedSubmitScript(**raw)
            except TypeError:
                logger.warning("Dropping malformed script cache entry for job %s", job_id)
        self._ensure_cache_dir()
        self._cleanup_old_entries()

    def _ensure_cache_dir(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Failed to create submit script cache directory: %s", e)

    def _persist(self) -> None:
        self._save({k: asdict(v) for k, v in self._cache.items()})

    @staticmethod
    def _delete_file(job_id: str, path: str) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Failed to delete cached script for job %s: %s", job_id, e)

    def _cleanup_old_entries(self) -> None:
        cutoff = self.clock() - self.max_age_days * DAY
        stale = [k for k, v in self._cache.items() if v.cached_at < cutoff]
        for job_id in stale:
            self._delete_file(job_id, self._cache.pop(job_id).cached_path)
        if stale:
            self._persist()

    def cache_script(self, job_id: str, original_path: str) -> Optional[str]:
        """
        Copy a job's submit script into the cache.

        Returns the cached path (the existing one if this job was already
        cached), or None if the script is missing or the copy fails.
        """
        with self._lock:
            existing = self._cache.get(job_id)
            if existing:
                return existing.cached_path

            if _is_unresolved(original_path):
                return None

            source = Path(original_path)
            if not source.is_file():
                logger.warning("Submit script not found for job %s: %s", job_id, original_path)
                return None

            timestamp = self.clock()
            safe_id = re.sub(r"[^a-zA-Z0-9_-]", "_", job_id)
            ext = source.suffix or ".sh"
            cached_path = self.cache_dir / f"{safe_id}_{int(timestamp * 1000)}{ext}"

            try:
                shutil.copyfile(source, cached_path)
            except OSError as e:
                logger.error("Failed to cache submit script for job %s: %s", job_id, e)
                return None

            self._cache[job_id] = CachedSubmitScript(
                original_path=original_path,
                cached_path=str(cached_path),
                cached_at=timestamp,
            )
            self._persist()

        logger.info("Cached submit script for job %s: %s", job_id, cached_path)
        return str(cached_path)

    def get(self, job_id: str) -> Optional[CachedSubmitScript]:
        return self._cache.get(job_id)

    def get_cached_script_path(self, job_id: str) -> Optional[str]:
        entry = self._cache.get(job_id)
        return entry.cached_path if entry else None

    def get_original_script_path(self, job_id: str) -> Optional[str]:
        entry = self._cache.get(job_id)
        return entry.original_path if entry else None

    def has(self, job_id: str) -> bool:
        return job_id in self._cache

    @property
    def size(self) -> int:
        return len(self._cache)

    def clear(self) -> None:
        """Drop every entry and delete the cached files."""
        with self._lock:
            for job_id, entry in self._cache.items():
                self._delete_file(job_id, entry.cached_path)
            self._cache.clear()
            self._persist()

    def format_cache_time(self, job_id: str) -> str:
        entry = self._cache.get(job_id)
        if not entry:
            return "N/A"
        date = datetime.fromtimestamp(entry.cached_at)
        return f"{date.strftime('%b')} {date.day}, {date.strftime('%H:%M')}"


class PinnedJobsCache(_PersistentMap):
    """Job IDs the user pinned, with the time they were pinned."""

    cache_key = "slurmPinnedJobs"
    stale_days = 7

    def __init__(self, store: KeyValueStore, clock: Clock = time.time):
        super().__init__(store, clock)
        self._pinned: Dict[str, float] = {}
        for job_id, pinned_at in self._load().items():
            try:
                self._pinned[job_id] = float(pinned_at)
            except (TypeError, ValueError):
                logger.warning("Dropping malformed pin for job %s", job_id)

    def _persist(self) -> None:
        self._save(dict(self._pinned))

    def pin(self, job_id: str) -> None:
        with self._lock:
            self._pinned[job_id] = self.clock()
            self._persist()

    def unpin(self, job_id: str) -> None:
        with self._lock:
            self._pinned.pop(job_id, None)
            self._persist()

    def is_pinned(self, job_id: str) -> bool:
        return job_id in self._pinned

    def get_pinned_job_ids(self) -> List[str]:
        return list(self._pinned)

    @property
    def size(self) -> int:
        return len(self._pinned)

    def clear(self) -> None:
        with self._lock:
            self._pinned.clear()
            self._persist()

    def cleanup_stale_jobs(self, active_job_ids: Iterable[str]) -> List[str]:
        """
        Unpin jobs that are gone from the queue and were pinned over
        `stale_days` ago. Pins of active or recently pinned jobs are kept.

        Returns the removed job IDs.
        """
        active = set(active_job_ids)
        cutoff = self.clock() - self.stale_days * DAY
        with self._lock:
            removed = [
                job_id
                for job_id, pinned_at in self._pinned.items()
                if job_id not in active and pinned_at < cutoff
            ]
            for job_id in removed:
                del self._pinned[job_id]
            if removed:
                self._persist()
        return removed
