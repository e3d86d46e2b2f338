"""REST API routes for SLURM Manager."""
from __future__ import annotations

import re
from dataclasses import asdict

from flask import Blueprint, Response, current_app, jsonify, request

from slurm_manager.services.arrays import InvalidSelectorError, validate_array_selection
from slurm_manager.services.context import SlurmContext
from slurm_manager.services.logs import existing_log_path, search_log, tail_log
from slurm_manager.services.slurm import filter_history, paginate

api = Blueprint("api", __name__, url_prefix="/api")

_JOB_ID = re.compile(r"^\d+(_\d+)?$")


def get_context() -> SlurmContext:
    return current_app.extensions["slurm_manager"]


def valid_job_id(job_id: str) -> bool:
    return bool(_JOB_ID.match(job_id or ""))


def _int_arg(name: str, default: int, low: int, high: int) -> int:
    try:
        value = int(request.args.get(name, str(default)))
    except ValueError:
        return default
    return max(low, min(high, value))


@api.route("/jobs")
def jobs() -> Response:
    """Get the user's active jobs, running first."""
    context = get_context()
    rows = []
    for job in context.refresh_jobs():
        row = job.to_dict()
        row["pinned"] = context.pinned_cache.is_pinned(job.job_id)
        rows.append(row)
    return jsonify({"jobs": rows, "pinned": context.pinned_cache.get_pinned_job_ids()})


@api.route("/job_history")
def job_history() -> Response:
    """
    Get finished jobs.

    Query params:
        days: Number of days of history (default from config, max 90)
        q: Filter on job name or ID
        page: Zero-based page number (default 0)
        per_page: Jobs per page (default 20, max 200)
        refresh: "true" to bypass the short-lived history cache
        paths: "true" to fill in stdout/stderr paths for the returned page
    """
    context = get_context()
    days = _int_arg("days", context.config.history_days, 1, 90)
    page = _int_arg("page", 0, 0, 1_000_000)
    per_page = _int_arg("per_page", 20, 1, 200)
    refresh = request.args.get("refresh", "false").lower() == "true"
    search = request.args.get("q", "")

    history = filter_history(context.get_history(days, refresh=refresh), search)
    result = paginate(history, page, per_page)
    items = result["items"]
    if request.args.get("paths", "false").lower() == "true":
        items = [context.service.resolve_history_paths(job) for job in items]
    result["items"] = [job.to_dict() for job in items]
    result["days"] = days
    return jsonify(result)


@api.route("/job_paths/<job_id>")
def job_paths(job_id: str) -> Response:
    """
    Get stdout/stderr paths of a finished job.

    Query params:
        name: Job name, used to expand %x in paths
        nodes: Node list, used to expand %N in paths
    """
    if not valid_job_id(job_id):
        return jsonify({"error": "Invalid job ID"}), 400

    context = get_context()
    name = request.args.get("name", "")
    nodes = request.args.get("nodes", "N/A")
    stdout_path, stderr_path = context.service.expanded_history_paths(job_id, name, nodes)
    return jsonify({"stdout_path": stdout_path, "stderr_path": stderr_path})


@api.route("/cancel/<job_id>", methods=["POST"])
def cancel(job_id: str) -> Response:
    """Cancel a single job or array task."""
    if not valid_job_id(job_id):
        return jsonify({"error": "Invalid job ID"}), 400
    result = get_context().service.cancel_job(job_id)
    if result.success:
        return jsonify({"success": True, "message": result.message})
    return jsonify({"error": result.message}), 500


@api.route("/array_bounds/<job_id>")
def array_bounds(job_id: str) -> Response:
    """Get the lowest and highest task index of a job array."""
    if not job_id.isdigit():
        return jsonify({"error": "Invalid job ID"}), 400
    bounds = get_context().service.get_array_bounds(job_id)
    if bounds is None:
        return jsonify({"error": f"Job {job_id} is not an active job array"}), 404
    return jsonify(asdict(bounds))


@api.route("/cancel_array", methods=["POST"])
def cancel_array() -> Response:
    """
    Cancel part or all of a job array.

    JSON body:
        job_id: Base job ID of the array (required)
        selector: "", "all", "L-H", "L-H:S" or "i1,i2,..." (default entire array)
        confirm: Must be true when the selection needs confirmation

    Answers 409 with the task count when confirmation is required but missing.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "No JSON body provided"}), 400

    base_id = str(data.get("job_id", ""))
    if not base_id.isdigit():
        return jsonify({"error": "Invalid job ID"}), 400

    context = get_context()
    bounds = context.service.get_array_bounds(base_id)
    if bounds is None:
        return jsonify({"error": f"Job {base_id} is not an active job array"}), 404

    try:
        selection = validate_array_selection(
            base_id,
            data.get("selector", ""),
            bounds,
            confirm_threshold=context.config.confirm_threshold,
        )
    except InvalidSelectorError as e:
        return jsonify({"error": str(e)}), 400

    if selection.requires_confirmation and not data.get("confirm"):
        return jsonify({
            "error": f"Cancelling {selection.count} tasks requires confirmation",
            "requires_confirmation": True,
            "count": selection.count,
        }), 409

    results = context.service.cancel_array(selection)
    failed = [r for r in results if not r.success]
    body = {
        "success": not failed,
        "count": selection.count,
        "results": [asdict(r) for r in results],
    }
    return jsonify(body), (200 if not failed else 207)


@api.route("/pin/<job_id>", methods=["POST"])
def pin(job_id: str) -> Response:
    if not valid_job_id(job_id):
        return jsonify({"error": "Invalid job ID"}), 400
    get_context().pinned_cache.pin(job_id)
    return jsonify({"success": True})


@api.route("/unpin/<job_id>", methods=["POST"])
def unpin(job_id: str) -> Response:
    if not valid_job_id(job_id):
        return jsonify({"error": "Invalid job ID"}), 400
    get_context().pinned_cache.unpin(job_id)
    return jsonify({"success": True})


@api.route("/pinned")
def pinned() -> Response:
    return jsonify({"pinned": get_context().pinned_cache.get_pinned_job_ids()})


@api.route("/submit", methods=["POST"])
def submit() -> Response:
    """
    Submit a job script with sbatch.

    JSON body:
        script_path: Path to the script (required)
        work_dir: Working directory (optional, defaults to the script's directory)
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "No JSON body provided"}), 400

    script_path = data.get("script_path")
    if not script_path:
        return jsonify({"error": "script_path is required"}), 400

    result = get_context().service.submit_job(script_path, work_dir=data.get("work_dir"))
    if not result["success"]:
        return jsonify({"error": result["message"]}), 500
    return jsonify(result)


@api.route("/script/<job_id>")
def script(job_id: str) -> Response:
    """Get the submit script a job was submitted with (cached copy)."""
    if not valid_job_id(job_id):
        return jsonify({"error": "Invalid job ID"}), 400

    entry = get_context().script_cache.get(job_id)
    path = existing_log_path(entry.cached_path if entry else None)
    if path is None:
        return jsonify({"error": "No cached script for this job"}), 404

    content = tail_log(path)
    if "error" in content:
        return jsonify(content), 404
    content["original_path"] = entry.original_path
    content["cached_at"] = get_context().script_cache.format_cache_time(job_id)
    return jsonify(content)


@api.route("/log/<job_id>")
def log(job_id: str) -> Response:
    """
    Show or search a job's stdout/stderr.

    Query params:
        kind: "stdout" or "stderr" (default stdout)
        name: Job name, used to expand %x in the path
        nodes: Node list, used to expand %N in the path
        q: Search pattern; without it the end of the file is returned
        context: Context lines around matches (default 3, max 10)
        regex: "true" or "false" (default "true")
    """
    if not valid_job_id(job_id):
        return jsonify({"error": "Invalid job ID"}), 400

    kind = request.args.get("kind", "stdout")
    if kind not in {"stdout", "stderr"}:
        return jsonify({"error": "Invalid kind"}), 400

    stdout_path, stderr_path = get_context().service.expanded_history_paths(
        job_id, request.args.get("name", ""), request.args.get("nodes", "N/A")
    )
    path = existing_log_path(stdout_path if kind == "stdout" else stderr_path)
    if path is None:
        return jsonify({"error": "Log not found"}), 404

    pattern = request.args.get("q", "")
    if not pattern:
        return jsonify(tail_log(path))

    use_regex = request.args.get("regex", "true").lower() == "true"
    result = search_log(
        path, pattern, context_lines=_int_arg("context", 3, 0, 10), use_regex=use_regex
    )
    if "error" in result:
        return jsonify(result), 400
    return jsonify(result)


@api.route("/top_user")
def top_user() -> Response:
    """The user with the most running jobs on the cluster."""
    hog = get_context().service.get_top_job_hog()
    if hog is None:
        return jsonify({"error": "No running jobs"}), 404
    return jsonify(hog)
