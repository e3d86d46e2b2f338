"""Slurm command wrappers for querying job information."""
from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Set, Tuple

from slurm_manager.services.arrays import (
    ArrayBounds,
    ArraySelection,
    bounds_from_indices,
    cancel_targets,
    parse_array_task_spec,
)
from slurm_manager.services.executor import CommandExecutor, CommandResult
from slurm_manager.services.extract import JobDetails, extract_job_details
from slurm_manager.services.parsing import (
    calculate_progress,
    expand_path_placeholders,
    format_start_time,
    generate_progress_bar,
)

if TYPE_CHECKING:
    from slurm_manager.services.cache import JobPathCache, SubmitScriptCache

logger = logging.getLogger(__name__)

SQUEUE_FORMAT = "%i|%j|%t|%M|%P|%N|%l|%S"
SACCT_FORMAT = (
    "JobID,JobName,State,ExitCode,Start,End,Elapsed,Partition,NodeList,AllocCPUS,MaxRSS"
)


class JobState(str, Enum):
    """Compact job state codes reported by squeue (%t)."""

    RUNNING = "R"
    PENDING = "PD"
    COMPLETING = "CG"
    COMPLETED = "CD"
    FAILED = "F"
    TIMEOUT = "TO"
    CANCELLED = "CA"
    NODE_FAIL = "NF"
    PREEMPTED = "PR"
    SUSPENDED = "S"


STATE_DESCRIPTIONS = {
    JobState.RUNNING: "Running",
    JobState.PENDING: "Pending",
    JobState.COMPLETING: "Completing",
    JobState.COMPLETED: "Completed",
    JobState.FAILED: "Failed",
    JobState.TIMEOUT: "Timeout",
    JobState.CANCELLED: "Cancelled",
    JobState.NODE_FAIL: "Node Fail",
    JobState.PREEMPTED: "Preempted",
    JobState.SUSPENDED: "Suspended",
}

# Running jobs first, then pending, then completing, then everything else.
_STATE_ORDER = {JobState.RUNNING.value: 0, JobState.PENDING.value: 1, JobState.COMPLETING.value: 2}


def get_state_description(state: str) -> str:
    """Human-readable label for a squeue state code."""
    try:
        return STATE_DESCRIPTIONS[JobState(state)]
    except ValueError:
        return state


@dataclass
class JobRecord:
    """An active job as reported by squeue and scontrol."""

    job_id: str
    name: str
    state: str
    time: str
    partition: str
    nodes: str = "N/A"
    time_limit: str = "N/A"
    start_time: str = "N/A"
    stdout_path: str = "N/A"
    stderr_path: str = "N/A"
    work_dir: str = "N/A"
    submit_script: str = "N/A"
    cached_submit_script: Optional[str] = None
    gpu_name: Optional[str] = None
    gpu_memory: Optional[str] = None
    gpu_count: Optional[int] = None
    gpu_type: Optional[str] = None
    memory: Optional[str] = None

    @property
    def state_description(self) -> str:
        return get_state_description(self.state)

    @property
    def progress(self) -> int:
        return calculate_progress(self.time, self.time_limit)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state_description"] = self.state_description
        data["progress"] = self.progress
        data["progress_bar"] = generate_progress_bar(self.progress)
        data["start_display"] = format_start_time(self.start_time)
        return data


@dataclass
class HistoryRecord:
    """A finished job as reported by sacct."""

    job_id: str
    name: str
    state: str
    exit_code: int
    start_time: str
    end_time: str
    elapsed: str
    partition: str
    nodes: str
    cpus: str = "N/A"
    max_memory: str = "N/A"
    stdout_path: str = "N/A"
    stderr_path: str = "N/A"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state_info"] = get_history_state_info(self.state, self.exit_code)
        return data


@dataclass
class GpuInfo:
    name: str
    memory: str


@dataclass
class CancelResult:
    target: str
    success: bool
    message: str


def get_history_state_info(state: str, exit_code: int) -> dict:
    """Icon, color and description for a finished job's state."""
    if state == "COMPLETED" and exit_code == 0:
        return {"icon": "check", "color": "green", "description": "Completed Successfully"}
    if state == "COMPLETED":
        return {"icon": "error", "color": "red", "description": f"Failed (exit code {exit_code})"}
    if state == "FAILED":
        return {"icon": "error", "color": "red", "description": "Failed"}
    if state == "TIMEOUT":
        return {"icon": "clock", "color": "orange", "description": "Timeout"}
    if state.startswith("CANCELLED"):
        return {"icon": "circle-slash", "color": "orange", "description": "Cancelled"}
    if state == "NODE_FAIL":
        return {"icon": "error", "color": "red", "description": "Node Failure"}
    if state in {"OUT_OF_MEMORY", "OUT_OF_ME+"}:
        return {"icon": "warning", "color": "red", "description": "Out of Memory"}
    if state == "PREEMPTED":
        return {"icon": "debug-pause", "color": "yellow", "description": "Preempted"}
    return {"icon": "circle-outline", "color": "foreground", "description": state}


def parse_squeue_output(output: str) -> List[JobRecord]:
    """
    Parse `squeue --format=%i|%j|%t|%M|%P|%N|%l|%S` output.

    Lines with fewer than eight fields are skipped.
    """
    jobs = []
    for line in output.strip().splitlines():
        if not line.strip():
            continue
        parts = [p.strip() for p in line.split("|")]
        if len(parts) < 8:
            continue

        job_id, name, state, elapsed, partition, nodes, limit, start = parts[:8]
        jobs.append(
            JobRecord(
                job_id=job_id,
                name=name,
                state=state,
                time=elapsed,
                partition=partition,
                nodes=nodes or "N/A",
                time_limit=limit or "N/A",
                start_time=start or "N/A",
            )
        )
    return jobs


def sort_active_jobs(jobs: List[JobRecord]) -> List[JobRecord]:
    """Running jobs first, then pending, then completing, then the rest."""
    return sorted(jobs, key=lambda job: _STATE_ORDER.get(job.state, 99))


def _parse_end_time(end_time: str) -> Optional[datetime]:
    try:
        return datetime.fromisoformat(end_time)
    except ValueError:
        return None


def parse_sacct_output(output: str) -> List[HistoryRecord]:
    """
    Parse `sacct --parsable2` history output.

    Job steps (12345.batch, 12345.0) and jobs still running or pending are
    skipped. Results are sorted by end time, newest first; jobs without an
    end time go last.
    """
    jobs = []
    for line in output.strip().splitlines():
        if not line.strip():
            continue
        parts = [p.strip() for p in line.split("|")]
        if len(parts) < 9:
            continue

        job_id = parts[0]
        if "." in job_id:
            continue

        state = parts[2]
        if state in {"RUNNING", "PENDING"}:
            continue

        try:
            exit_code = int(parts[3].split(":")[0])
        except ValueError:
            exit_code = 0

        jobs.append(
            HistoryRecord(
                job_id=job_id,
                name=parts[1] or "N/A",
                state=state,
                exit_code=exit_code,
                start_time=parts[4] or "N/A",
                end_time=parts[5] or "N/A",
                elapsed=parts[6] or "N/A",
                partition=parts[7] or "N/A",
                nodes=parts[8] or "N/A",
                cpus=(parts[9] if len(parts) > 9 else "") or "N/A",
                max_memory=(parts[10] if len(parts) > 10 else "") or "N/A",
            )
        )

    ended = []
    unknown = []
    for job in jobs:
        end = _parse_end_time(job.end_time)
        if end is None:
            unknown.append(job)
        else:
            ended.append((end, job))
    ended.sort(key=lambda pair: pair[0], reverse=True)
    return [job for _, job in ended] + unknown


def filter_history(jobs: List[HistoryRecord], search: str) -> List[HistoryRecord]:
    """Jobs whose name contains `search` (any case) or whose ID contains it."""
    if not search:
        return jobs
    needle = search.lower()
    return [job for job in jobs if needle in job.name.lower() or search in job.job_id]


def paginate(items: list, page: int, per_page: int = 20) -> dict:
    """Slice one page out of `items`, clamping the page number."""
    total = len(items)
    pages = max(1, -(-total // per_page))
    page = max(0, min(page, pages - 1))
    start = page * per_page
    return {
        "items": items[start:start + per_page],
        "page": page,
        "pages": pages,
        "total": total,
    }


def parse_gpu_info(name_output: str, memory_output: str) -> GpuInfo:
    name = name_output.strip().split("\n")[0].strip() or "Unknown"
    memory = memory_output.strip().split("\n")[0].strip() or "Unknown"
    return GpuInfo(name=name, memory=memory)


class SlurmService:
    """
    Query and control jobs on a SLURM cluster.

    Every command goes through the injected executor. Caches are optional;
    without them jobs are returned without cached paths or scripts.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        user: str,
        path_cache: Optional["JobPathCache"] = None,
        script_cache: Optional["SubmitScriptCache"] = None,
        max_workers: int = 8,
    ):
        self.executor = executor
        self.user = user
        self.path_cache = path_cache
        self.script_cache = script_cache
        self.max_workers = max_workers

    def is_available(self) -> bool:
        return self.executor.run(["which", "squeue"]).ok

    def get_jobs(self) -> List[JobRecord]:
        """
        Fetch the user's active jobs with paths, GPUs and memory filled in.

        Returns an empty list when squeue cannot be run.
        """
        return self.fetch_jobs() or []

    def fetch_jobs(self) -> Optional[List[JobRecord]]:
        """Like get_jobs, but None when squeue failed rather than an empty queue."""
        result = self.executor.run(
            ["squeue", "-u", self.user, "--noheader", f"--format={SQUEUE_FORMAT}"]
        )
        if not result.ok:
            logger.warning("squeue failed: %s", result.error)
            return None

        jobs = parse_squeue_output(result.stdout)
        if not jobs:
            return jobs

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(self._enrich_job, job): job for job in jobs}
        for future, job in futures.items():
            error = future.exception()
            if error is not None:
                logger.warning("Failed to fetch details for job %s: %s", job.job_id, error)

        gpu_info = self.get_gpu_info()
        if gpu_info:
            # Telemetry comes from this host; assume it is where running jobs are.
            for job in jobs:
                if job.state == JobState.RUNNING.value:
                    job.gpu_name = gpu_info.name
                    job.gpu_memory = gpu_info.memory

        return jobs

    def _enrich_job(self, job: JobRecord) -> None:
        details = self.get_job_details(job.job_id)
        job.stdout_path = expand_path_placeholders(
            details.stdout_path, job.job_id, job.name, job.nodes
        )
        job.stderr_path = expand_path_placeholders(
            details.stderr_path, job.job_id, job.name, job.nodes
        )
        job.submit_script = details.submit_script
        job.work_dir = details.work_dir
        job.gpu_count = details.gpu_count
        job.gpu_type = details.gpu_type
        job.memory = details.memory

        if self.path_cache:
            self.path_cache.set(job.job_id, job.stdout_path, job.stderr_path)

        if self.script_cache and job.submit_script != "N/A":
            job.cached_submit_script = self.script_cache.cache_script(
                job.job_id, job.submit_script
            )

    def get_job_details(self, job_id: str) -> JobDetails:
        """Parse `scontrol show job`; all fields default to N/A on failure."""
        result = self.executor.run(["scontrol", "show", "job", job_id])
        if not result.ok:
            return JobDetails()
        return extract_job_details(result.stdout)

    def get_gpu_info(self) -> Optional[GpuInfo]:
        """GPU model and memory of this host from nvidia-smi, or None."""
        queries = ["name", "memory.total"]
        with ThreadPoolExecutor(max_workers=2) as pool:
            name_result, memory_result = pool.map(
                lambda q: self.executor.run(
                    ["nvidia-smi", f"--query-gpu={q}", "--format=csv,noheader"]
                ),
                queries,
            )
        if not (name_result.ok and memory_result.ok):
            return None
        return parse_gpu_info(name_result.stdout, memory_result.stdout)

    def get_job_history(self, days: int = 7) -> List[HistoryRecord]:
        """Finished jobs from sacct over the last `days` days."""
        start_date = (datetime.now() - timedelta(days=days)).strftime("%Y-%m-%d")
        result = self.executor.run(
            [
                "sacct",
                "-u", self.user,
                f"--starttime={start_date}",
                "--noheader",
                "--parsable2",
                f"--format={SACCT_FORMAT}",
            ],
            timeout=30,
        )
        if not result.ok:
            logger.debug("sacct failed: %s", result.error)
            return []
        return parse_sacct_output(result.stdout)

    def get_history_job_paths(self, job_id: str) -> Tuple[str, str]:
        """
        stdout/stderr paths for a finished job.

        Tries the path cache first, then scontrol (which still knows recently
        finished jobs). Returns ("N/A", "N/A") when neither has them.
        """
        if self.path_cache:
            cached = self.path_cache.get(job_id)
            if cached:
                return cached.stdout_path, cached.stderr_path

        result = self.executor.run(["scontrol", "show", "job", job_id])
        if result.ok:
            details = extract_job_details(result.stdout)
            if details.stdout_path != "N/A" or details.stderr_path != "N/A":
                if self.path_cache:
                    self.path_cache.set(job_id, details.stdout_path, details.stderr_path)
                return details.stdout_path, details.stderr_path

        return "N/A", "N/A"

    def expanded_history_paths(self, job_id: str, name: str, nodes: str) -> Tuple[str, str]:
        """get_history_job_paths with %x, %j, %N and friends filled in."""
        stdout_path, stderr_path = self.get_history_job_paths(job_id)
        return (
            expand_path_placeholders(stdout_path, job_id, name, nodes),
            expand_path_placeholders(stderr_path, job_id, name, nodes),
        )

    def resolve_history_paths(self, job: HistoryRecord) -> HistoryRecord:
        """Fill in a history record's paths if they are still unknown."""
        if job.stdout_path == "N/A" and job.stderr_path == "N/A":
            job.stdout_path, job.stderr_path = self.expanded_history_paths(
                job.job_id, job.name, job.nodes
            )
        return job

    def get_array_bounds(self, base_id: str) -> Optional[ArrayBounds]:
        """
        Lowest and highest task index of a job array.

        scontrol prints one record per task (or a collapsed record for
        pending tasks), each with an ArrayTaskId field.
        """
        result = self.executor.run(["scontrol", "show", "job", base_id])
        if not result.ok:
            return None

        indices: List[int] = []
        for spec in re.findall(r"\bArrayTaskId=(\S+)", result.stdout):
            indices.extend(parse_array_task_spec(spec))
        return bounds_from_indices(indices)

    def cancel_job(self, job_id: str) -> CancelResult:
        result = self.executor.run(["scancel", job_id])
        if result.ok:
            return CancelResult(job_id, True, f"Job {job_id} cancelled successfully")
        logger.error("Failed to cancel job %s: %s", job_id, result.error)
        return CancelResult(job_id, False, f"Failed to cancel job {job_id}: {result.error}")

    def cancel_array(self, selection: ArraySelection) -> List[CancelResult]:
        """Cancel every target of a validated selection; failures don't stop the rest."""
        return [self.cancel_job(target) for target in cancel_targets(selection)]

    def submit_job(self, script_path: str, work_dir: Optional[str] = None) -> dict:
        """
        Submit a script with sbatch from its own directory (or `work_dir`).

        Returns dict with success, job_id and message.
        """
        script = Path(script_path).expanduser()
        if not script.is_file():
            return {"success": False, "job_id": None, "message": f"Script not found: {script_path}"}

        result: CommandResult = self.executor.run(
            ["sbatch", str(script)], cwd=work_dir or str(script.parent), timeout=30
        )
        if not result.ok:
            logger.error("Failed to submit job from %s: %s", script_path, result.error)
            return {
                "success": False,
                "job_id": None,
                "message": f"Failed to submit job: {result.error}",
            }

        match = re.search(r"Submitted batch job (\d+)", result.stdout)
        if match:
            return {
                "success": True,
                "job_id": match.group(1),
                "message": f"Job submitted successfully with ID: {match.group(1)}",
            }
        return {
            "success": True,
            "job_id": None,
            "message": f"Job submitted but couldn't parse job ID. Output: {result.stdout.strip()}",
        }

    def get_top_job_hog(self) -> Optional[dict]:
        """The user with the most running jobs on the cluster."""
        result = self.executor.run(["squeue", "--noheader", "--state=R", "--format=%u"])
        if not result.ok:
            return None

        counts: dict = {}
        for user in result.stdout.split():
            counts[user] = counts.get(user, 0) + 1
        if not counts:
            return None

        user = max(counts, key=counts.get)
        return {"username": user, "job_count": counts[user]}


def active_job_ids(jobs: Iterable[JobRecord]) -> Set[str]:
    """IDs of a queue snapshot, for stale-pin cleanup."""
    return {job.job_id for job in jobs}
