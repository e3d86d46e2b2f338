"""Time arithmetic and path placeholder helpers for SLURM output."""
from __future__ import annotations

import getpass
import re
from datetime import datetime
from typing import Optional

UNKNOWN = -1

_NO_TIME = {"", "N/A", "UNLIMITED", "INVALID"}


def _to_int(token: str) -> int:
    try:
        return int(token)
    except ValueError:
        return 0


def parse_time_to_seconds(time_str: str) -> int:
    """
    Parse a slurm duration (D-HH:MM:SS, HH:MM:SS, MM:SS or SS) to seconds.

    Returns UNKNOWN (-1) for empty, N/A, UNLIMITED or INVALID values.
    Sub-tokens that fail to parse count as zero.
    """
    if time_str is None or time_str.strip() in _NO_TIME:
        return UNKNOWN

    time_str = time_str.strip()
    days = 0
    if "-" in time_str:
        day_part, time_str = time_str.split("-", 1)
        days = _to_int(day_part)

    parts = [_to_int(p) for p in time_str.split(":")]
    hours = minutes = seconds = 0
    if len(parts) == 3:
        hours, minutes, seconds = parts
    elif len(parts) == 2:
        minutes, seconds = parts
    elif len(parts) == 1:
        seconds = parts[0]

    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def calculate_progress(elapsed: str, limit: str) -> int:
    """Percentage of the time limit used, capped at 100, or UNKNOWN."""
    elapsed_sec = parse_time_to_seconds(elapsed)
    limit_sec = parse_time_to_seconds(limit)

    if elapsed_sec < 0 or limit_sec <= 0:
        return UNKNOWN

    # Half-up rounding; round() would send 12.5 to 12.
    progress = int(elapsed_sec * 100 / limit_sec + 0.5)
    return min(100, progress)


def generate_progress_bar(progress: int, width: int = 10) -> str:
    """Render a progress value as a row of filled and empty circles."""
    if progress < 0:
        return ""

    filled = int(progress / 100 * width + 0.5)
    return f"{'●' * filled}{'○' * (width - filled)} {progress}%"


def format_start_time(start_time: str, now: Optional[datetime] = None) -> str:
    """Format a slurm start time for display (HH:MM today, else 'Mon D, HH:MM')."""
    if not start_time or start_time in {"N/A", "Unknown"}:
        return "TBD"

    try:
        date = datetime.fromisoformat(start_time)
    except ValueError:
        return start_time

    now = now or datetime.now()
    if date.date() == now.date():
        return date.strftime("%H:%M")
    return f"{date.strftime('%b')} {date.day}, {date.strftime('%H:%M')}"


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "user"


_PLACEHOLDER = re.compile(r"%[jxuNAat%]")


def expand_path_placeholders(path: str, job_id: str, job_name: str, nodes: str) -> str:
    """
    Expand slurm filename placeholders left unexpanded by scontrol.

    scontrol reports raw patterns for pending jobs and job arrays.

    Supported tokens:
        %j - job ID
        %x - job name
        %u - user name
        %N - first node (PENDING_NODE while the job has none)
        %A - array master job ID
        %a - array task index (0 for non-array jobs)
        %t - task ID (always 0)
        %% - literal percent
    """
    if not path or path == "N/A":
        return path

    master, _, index = job_id.partition("_")
    if nodes and nodes != "N/A":
        first_node = nodes.split(",")[0].split("[")[0]
    else:
        first_node = "PENDING_NODE"

    values = {
        "%j": job_id,
        "%x": job_name,
        "%N": first_node,
        "%A": master,
        "%a": index or "0",
        "%t": "0",
        "%%": "%",
    }

    def substitute(match: re.Match) -> str:
        token = match.group(0)
        if token == "%u":
            return _current_user()
        return values[token]

    return _PLACEHOLDER.sub(substitute, path)
