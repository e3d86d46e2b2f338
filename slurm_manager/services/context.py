"""Long-lived state shared by the API: caches and the slurm service."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Tuple

from slurm_manager.services.cache import (
    JobPathCache,
    JsonFileStore,
    KeyValueStore,
    PinnedJobsCache,
    SubmitScriptCache,
)
from slurm_manager.services.executor import CommandExecutor, SubprocessExecutor
from slurm_manager.services.slurm import (
    HistoryRecord,
    JobRecord,
    SlurmService,
    active_job_ids,
    sort_active_jobs,
)

if TYPE_CHECKING:
    from slurm_manager.config import Config

logger = logging.getLogger(__name__)


@dataclass
class SlurmContext:
    """Everything that outlives a single request."""

    config: "Config"
    service: SlurmService
    path_cache: JobPathCache
    script_cache: SubmitScriptCache
    pinned_cache: PinnedJobsCache
    _history: Optional[Tuple[float, int, List[HistoryRecord]]] = field(default=None, repr=False)

    @classmethod
    def create(
        cls,
        config: "Config",
        executor: Optional[CommandExecutor] = None,
        store: Optional[KeyValueStore] = None,
    ) -> "SlurmContext":
        """Build caches and service from configuration."""
        store = store or JsonFileStore(config.cache_dir)
        executor = executor or SubprocessExecutor(timeout=config.command_timeout)

        path_cache = JobPathCache(store)
        script_cache = SubmitScriptCache(store, config.cache_dir)
        pinned_cache = PinnedJobsCache(store)
        service = SlurmService(
            executor,
            user=config.user,
            path_cache=path_cache,
            script_cache=script_cache,
            max_workers=config.max_workers,
        )
        logger.info(
            "Loaded caches: %d job paths, %d submit scripts, %d pinned jobs",
            path_cache.size,
            script_cache.size,
            pinned_cache.size,
        )
        return cls(config, service, path_cache, script_cache, pinned_cache)

    def refresh_jobs(self) -> List[JobRecord]:
        """
        Fetch active jobs, ordered by state, and drop stale pins.

        Pins are only cleaned against a queue snapshot squeue actually
        returned; a failed fetch leaves them untouched.
        """
        fetched = self.service.fetch_jobs()
        if fetched is None:
            return []

        jobs = sort_active_jobs(fetched)
        removed = self.pinned_cache.cleanup_stale_jobs(active_job_ids(jobs))
        if removed:
            logger.info("Removed stale pins: %s", ", ".join(removed))
        return jobs

    def get_history(self, days: int, refresh: bool = False) -> List[HistoryRecord]:
        """
        Job history, reusing the last sacct result for `refresh_cache` seconds.

        A refresh, a different `days` value or an expired result re-runs sacct
        and replaces the stored list as a whole.
        """
        now = time.monotonic()
        cached = self._history
        if (
            not refresh
            and cached is not None
            and cached[1] == days
            and now - cached[0] < self.config.refresh_cache
        ):
            return cached[2]

        jobs = self.service.get_job_history(days)
        self._history = (now, days, jobs)
        return jobs

    def close(self) -> None:
        """Flush every cache; each one independently of the others."""
        for cache in (self.path_cache, self.script_cache, self.pinned_cache):
            cache.flush()
        logger.info("Slurm context closed")
