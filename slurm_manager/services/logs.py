"""Reading job stdout/stderr files and archived submit scripts."""

import re
from pathlib import Path
from typing import List, Optional

DEFAULT_TAIL_BYTES = 200_000


def _numbered(lines: List[str], start: int, stop: int) -> List[dict]:
    return [{"line_number": i + 1, "text": lines[i].rstrip()} for i in range(start, stop)]


def search_log(
    path: Path,
    pattern: str,
    context_lines: int = 3,
    max_matches: int = 500,
    use_regex: bool = True,
) -> dict:
    """
    Find lines matching `pattern` (case-insensitive) in a job's output file.

    Each hit carries up to `context_lines` neighbouring lines on either side.
    Only the first `max_matches` hits are returned, but `total_matches`
    counts all of them. A bad regex or unreadable file yields an "error" key.
    """
    try:
        regex = re.compile(pattern if use_regex else re.escape(pattern), re.IGNORECASE)
    except re.error as e:
        return {"error": f"Invalid regex: {e}", "matches": [], "total_matches": 0}

    try:
        with path.open("r", errors="replace") as handle:
            lines = handle.readlines()
    except OSError as e:
        return {"error": f"Could not read file: {e}", "matches": [], "total_matches": 0}

    hits = [i for i, line in enumerate(lines) if regex.search(line)]

    matches = []
    for hit in hits[:max_matches]:
        matches.append({
            "line_number": hit + 1,
            "text": lines[hit].rstrip(),
            "context_before": _numbered(lines, max(0, hit - context_lines), hit),
            "context_after": _numbered(lines, hit + 1, min(len(lines), hit + context_lines + 1)),
        })

    return {
        "matches": matches,
        "total_matches": len(hits),
        "truncated": len(hits) > max_matches,
    }


def tail_log(path: Path, max_bytes: int = DEFAULT_TAIL_BYTES) -> dict:
    """Return the last `max_bytes` of a file, starting on a full line."""
    try:
        with path.open("rb") as handle:
            handle.seek(0, 2)
            size = handle.tell()
            start = max(size - max_bytes, 0)
            handle.seek(start)
            if start > 0:
                handle.readline()
            data = handle.read()
    except OSError as e:
        return {"error": f"Could not read file: {e}"}

    return {
        "content": data.decode("utf-8", errors="replace"),
        "path": str(path),
        "size": human_size(size),
        "truncated": start > 0,
    }


def human_size(size: int) -> str:
    """Convert bytes to human-readable size string."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}TB"


def existing_log_path(path: Optional[str]) -> Optional[Path]:
    """The path as a Path if it names an existing regular file, else None."""
    if not path or path == "N/A":
        return None
    target = Path(path).expanduser()
    if not target.is_file():
        return None
    return target
