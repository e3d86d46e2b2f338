"""Tests for the REST API."""

import pytest

from slurm_manager.app import create_app, get_context
from slurm_manager.services.cache import MemoryStore
from slurm_manager.services.executor import CommandResult
from tests.samples import SCONTROL_PENDING, SCONTROL_RUNNING, SQUEUE_OUTPUT, FakeExecutor

SQUEUE_CMD = "squeue -u alice --noheader --format=%i|%j|%t|%M|%P|%N|%l|%S"

SACCT_OUTPUT = """2001|train|COMPLETED|0:0|2024-03-01T10:00:00|2024-03-01T12:00:00|02:00:00|gpu|gpu01
2002|eval|FAILED|1:0|2024-03-02T10:00:00|2024-03-02T11:00:00|01:00:00|cpu|cpu01
2003|train-big|TIMEOUT|0:0|2024-03-03T10:00:00|2024-03-03T11:00:00|01:00:00|gpu|gpu02
"""

ARRAY_OUTPUT = "JobId=500 ArrayJobId=500 ArrayTaskId=0-200 JobState=PENDING\n"


@pytest.fixture
def executor():
    return FakeExecutor({
        SQUEUE_CMD: SQUEUE_OUTPUT,
        "scontrol show job 1001": SCONTROL_RUNNING,
        "scontrol show job 1002": SCONTROL_PENDING,
        "scontrol show job 500": ARRAY_OUTPUT,
        "sacct *": SACCT_OUTPUT,
    })


@pytest.fixture
def app(config, executor):
    return create_app(config, executor=executor, store=MemoryStore())


@pytest.fixture
def client(app):
    return app.test_client()


class TestJobs:
    def test_list(self, client):
        response = client.get("/api/jobs")

        assert response.status_code == 200
        jobs = response.get_json()["jobs"]
        assert [job["job_id"] for job in jobs] == ["1001", "1002"]
        assert jobs[0]["stdout_path"] == "/home/alice/logs/train-1001.out"
        assert jobs[0]["state_description"] == "Running"
        assert jobs[0]["pinned"] is False
        assert jobs[0]["progress_bar"] == "●●●●●○○○○○ 50%"
        assert jobs[1]["progress_bar"] == "○○○○○○○○○○ 0%"
        assert jobs[0]["start_display"] == "Mar 5, 09:00"

    def test_pin_flag(self, client):
        assert client.post("/api/pin/1002").status_code == 200

        data = client.get("/api/jobs").get_json()

        assert data["pinned"] == ["1002"]
        assert data["jobs"][1]["pinned"] is True

    def test_unpin(self, client):
        client.post("/api/pin/1002")
        client.post("/api/unpin/1002")

        assert client.get("/api/pinned").get_json() == {"pinned": []}

    def test_pin_rejects_bad_id(self, client):
        assert client.post("/api/pin/abc").status_code == 400


class TestHistory:
    def test_pagination(self, client):
        data = client.get("/api/job_history?per_page=2").get_json()

        assert data["total"] == 3
        assert data["pages"] == 2
        assert [job["job_id"] for job in data["items"]] == ["2003", "2002"]
        assert data["items"][0]["state_info"]["description"] == "Timeout"
        assert data["days"] == 7

    def test_search(self, client):
        data = client.get("/api/job_history?q=train").get_json()
        assert [job["job_id"] for job in data["items"]] == ["2003", "2001"]

    def test_paths_filled_on_request(self, client, executor):
        executor.responses["scontrol show job 2001"] = SCONTROL_RUNNING

        plain = client.get("/api/job_history").get_json()
        assert plain["items"][2]["stdout_path"] == "N/A"

        data = client.get("/api/job_history?paths=true").get_json()
        assert data["items"][2]["job_id"] == "2001"
        assert data["items"][2]["stdout_path"] == "/home/alice/logs/train-2001.out"

    def test_days_clamped(self, client):
        assert client.get("/api/job_history?days=500").get_json()["days"] == 90

    def test_job_paths(self, client):
        response = client.get("/api/job_paths/1001?name=train&nodes=gpu01")

        assert response.get_json() == {
            "stdout_path": "/home/alice/logs/train-1001.out",
            "stderr_path": "/home/alice/logs/train-1001.err",
        }


class TestCancel:
    def test_cancel_job(self, client, executor):
        executor.responses["scancel 1001"] = ""
        assert client.post("/api/cancel/1001").get_json()["success"]

    def test_cancel_failure(self, client, executor):
        executor.responses["scancel 1001"] = CommandResult(ok=False, error="Access denied")
        response = client.post("/api/cancel/1001")

        assert response.status_code == 500
        assert "Access denied" in response.get_json()["error"]

    def test_array_bounds(self, client):
        assert client.get("/api/array_bounds/500").get_json() == {"low": 0, "high": 200}
        assert client.get("/api/array_bounds/999").status_code == 404


class TestCancelArray:
    def test_missing_body(self, client):
        assert client.post("/api/cancel_array").status_code == 400

    def test_not_an_array(self, client):
        response = client.post("/api/cancel_array", json={"job_id": "999", "selector": "1"})
        assert response.status_code == 404

    @pytest.mark.parametrize("selector", ["10-2", "0-300", "0-999999999", "1,1", "a-b"])
    def test_invalid_selector(self, client, executor, selector):
        response = client.post("/api/cancel_array", json={"job_id": "500", "selector": selector})

        assert response.status_code == 400
        assert executor.count("scancel") == 0

    def test_large_selection_needs_confirmation(self, client, executor):
        response = client.post("/api/cancel_array", json={"job_id": "500", "selector": "0-150"})

        assert response.status_code == 409
        data = response.get_json()
        assert data["requires_confirmation"] is True
        assert data["count"] == 151
        assert executor.count("scancel") == 0

    def test_confirmed(self, client, executor):
        executor.responses["scancel *"] = ""
        response = client.post(
            "/api/cancel_array", json={"job_id": "500", "selector": "0-150", "confirm": True}
        )

        assert response.status_code == 200
        assert executor.calls[-1] == "scancel 500_[0-150]"

    def test_entire_array(self, client, executor):
        executor.responses["scancel 500"] = ""
        response = client.post("/api/cancel_array", json={"job_id": "500", "selector": "all"})

        assert response.status_code == 200
        assert response.get_json()["results"][0]["target"] == "500"

    def test_partial_failure(self, client, executor):
        executor.responses["scancel 500_1"] = ""
        executor.responses["scancel 500_2"] = CommandResult(ok=False, error="already done")
        response = client.post("/api/cancel_array", json={"job_id": "500", "selector": "1,2"})

        assert response.status_code == 207
        data = response.get_json()
        assert data["success"] is False
        assert [r["success"] for r in data["results"]] == [True, False]


class TestSubmit:
    def test_submit(self, client, executor, tmp_path):
        script = tmp_path / "run.sh"
        script.write_text("#!/bin/bash\n")
        executor.responses[f"sbatch {script}"] = "Submitted batch job 77\n"

        response = client.post("/api/submit", json={"script_path": str(script)})

        assert response.status_code == 200
        assert response.get_json()["job_id"] == "77"

    def test_missing_path(self, client):
        assert client.post("/api/submit", json={"work_dir": "/tmp"}).status_code == 400

    def test_missing_script(self, client, tmp_path):
        response = client.post("/api/submit", json={"script_path": str(tmp_path / "nope.sh")})
        assert response.status_code == 500


class TestFiles:
    def test_log_tail_and_search(self, app, client, tmp_path):
        log = tmp_path / "eval-2002.out"
        log.write_text("start\nepoch 1\nERROR: diverged\nend\n")
        get_context(app).path_cache.set("2002", str(tmp_path / "%x-%j.out"), "N/A")

        tail = client.get("/api/log/2002?name=eval").get_json()
        assert tail["content"].startswith("start")

        found = client.get("/api/log/2002?name=eval&q=error&context=1").get_json()
        assert found["total_matches"] == 1
        assert found["matches"][0]["line_number"] == 3
        assert found["matches"][0]["context_before"][0]["text"] == "epoch 1"

    def test_log_missing(self, client):
        assert client.get("/api/log/4444").status_code == 404

    def test_log_bad_regex(self, app, client, tmp_path):
        log = tmp_path / "x.out"
        log.write_text("hello\n")
        get_context(app).path_cache.set("7", str(log), "N/A")

        assert client.get("/api/log/7?q=(").status_code == 400
        assert client.get("/api/log/7?q=(&regex=false").status_code == 200

    def test_script(self, app, client, tmp_path):
        script = tmp_path / "train.sh"
        script.write_text("#!/bin/bash\npython train.py\n")
        get_context(app).script_cache.cache_script("1001", str(script))

        data = client.get("/api/script/1001").get_json()

        assert "python train.py" in data["content"]
        assert data["original_path"] == str(script)
        assert data["cached_at"] != "N/A"

    def test_script_missing(self, client):
        assert client.get("/api/script/1001").status_code == 404


def test_top_user(client, executor):
    assert client.get("/api/top_user").status_code == 404

    executor.responses["squeue --noheader --state=R --format=%u"] = "bob\nbob\nalice\n"
    assert client.get("/api/top_user").get_json() == {"username": "bob", "job_count": 2}
