"""Field extraction from `scontrol show job` output."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple


@dataclass
class GpuAllocation:
    """GPU count and (optional) model allocated to a job."""

    count: int
    type: Optional[str] = None


@dataclass
class JobDetails:
    """Fields pulled from a single job detail blob."""

    stdout_path: str = "N/A"
    stderr_path: str = "N/A"
    submit_script: str = "N/A"
    work_dir: str = "N/A"
    gpu_count: Optional[int] = None
    gpu_type: Optional[str] = None
    memory: Optional[str] = None


def _field(text: str, key: str) -> Optional[str]:
    match = re.search(rf"\b{key}=(\S+)", text)
    return match.group(1) if match else None


# GPU strategies, each a pure function from the detail blob to an allocation.
# scontrol has reported GPUs in several places across slurm releases.


def gpu_from_tres_per_node(text: str) -> Optional[GpuAllocation]:
    """TresPerNode=gres/gpu:h200:2"""
    match = re.search(r"TresPerNode=gres/gpu:([^:\s]+):(\d+)", text)
    if match:
        return GpuAllocation(count=int(match.group(2)), type=match.group(1).upper())
    return None


def gpu_from_alloc_tres_typed(text: str) -> Optional[GpuAllocation]:
    """AllocTRES=...,gres/gpu:h200=2"""
    match = re.search(r"AllocTRES=\S*gres/gpu:([^=\s,]+)=(\d+)", text)
    if match:
        return GpuAllocation(count=int(match.group(2)), type=match.group(1).upper())
    return None


def gpu_from_alloc_tres_count(text: str) -> Optional[GpuAllocation]:
    """AllocTRES=...,gres/gpu=2"""
    match = re.search(r"AllocTRES=\S*gres/gpu=(\d+)", text)
    if match:
        return GpuAllocation(count=int(match.group(1)))
    return None


def gpu_from_gres(text: str) -> Optional[GpuAllocation]:
    """Gres=gpu:a100:2 or Gres=gpu:4 (legacy field, (null) when unset)"""
    gres = _field(text, "Gres")
    if not gres or gres == "(null)":
        return None

    match = re.search(r"gpu:([^:\s]+):(\d+)", gres)
    if match:
        return GpuAllocation(count=int(match.group(2)), type=match.group(1).upper())

    match = re.search(r"gpu:(\d+)", gres)
    if match:
        return GpuAllocation(count=int(match.group(1)))
    return None


GPU_STRATEGIES: Tuple[Callable[[str], Optional[GpuAllocation]], ...] = (
    gpu_from_tres_per_node,
    gpu_from_alloc_tres_typed,
    gpu_from_alloc_tres_count,
    gpu_from_gres,
)


def extract_gpu(text: str) -> Optional[GpuAllocation]:
    """Try each GPU strategy in order and return the first hit."""
    for strategy in GPU_STRATEGIES:
        gpu = strategy(text)
        if gpu is not None:
            return gpu
    return None


def extract_memory(text: str) -> Optional[str]:
    """
    Allocated memory from AllocTRES (e.g. mem=500000M -> 500G).

    Megabyte values of 1000 or more are shown in G; anything else keeps
    its own unit.
    """
    match = re.search(r"AllocTRES=\S*?\bmem=(\d+)([KMGT])?", text)
    if not match:
        return None

    value = int(match.group(1))
    unit = match.group(2) or "M"
    if unit == "M" and value >= 1000:
        return f"{int(value / 1000 + 0.5)}G"
    return f"{value}{unit}"


def extract_job_details(text: str) -> JobDetails:
    """Extract paths, GPU allocation and memory from `scontrol show job` output."""
    gpu = extract_gpu(text)
    return JobDetails(
        stdout_path=_field(text, "StdOut") or "N/A",
        stderr_path=_field(text, "StdErr") or "N/A",
        submit_script=_field(text, "Command") or "N/A",
        work_dir=_field(text, "WorkDir") or "N/A",
        gpu_count=gpu.count if gpu else None,
        gpu_type=gpu.type if gpu else None,
        memory=extract_memory(text),
    )
