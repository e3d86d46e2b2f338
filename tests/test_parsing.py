"""Tests for time arithmetic and path placeholder expansion."""

import getpass
from datetime import datetime

import pytest

from slurm_manager.services.parsing import (
    UNKNOWN,
    calculate_progress,
    expand_path_placeholders,
    format_start_time,
    generate_progress_bar,
    parse_time_to_seconds,
)


class TestParseTimeToSeconds:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("1-00:30:00", 88200),
            ("1-01:00:00", 90000),
            ("00:30:00", 1800),
            ("30:00", 1800),
            ("45", 45),
            ("2-01:02:03", 2 * 86400 + 3723),
            ("0:00", 0),
        ],
    )
    def test_valid_formats(self, text, expected):
        assert parse_time_to_seconds(text) == expected

    @pytest.mark.parametrize("text", ["", "N/A", "UNLIMITED", "INVALID"])
    def test_unknown_values(self, text):
        assert parse_time_to_seconds(text) == UNKNOWN

    def test_bad_subtoken_counts_as_zero(self):
        """Unparseable pieces default to zero instead of failing."""
        assert parse_time_to_seconds("01:xx:30") == 3630
        assert parse_time_to_seconds("x-00:01:00") == 60


class TestCalculateProgress:
    def test_half_way(self):
        assert calculate_progress("00:30:00", "01:00:00") == 50

    def test_clamped_at_100(self):
        """Elapsed past the limit never reports above 100."""
        assert calculate_progress("02:00:00", "01:00:00") == 100

    def test_unlimited_limit_is_unknown(self):
        assert calculate_progress("00:30:00", "UNLIMITED") == UNKNOWN

    def test_unknown_elapsed(self):
        assert calculate_progress("N/A", "01:00:00") == UNKNOWN

    def test_zero_limit(self):
        assert calculate_progress("00:00:10", "0") == UNKNOWN

    def test_rounds_half_up(self):
        assert calculate_progress("1", "8") == 13


class TestProgressBar:
    def test_renders_bar(self):
        assert generate_progress_bar(50) == "●●●●●○○○○○ 50%"

    def test_unknown_is_empty(self):
        assert generate_progress_bar(UNKNOWN) == ""


class TestFormatStartTime:
    def test_missing(self):
        assert format_start_time("N/A") == "TBD"
        assert format_start_time("Unknown") == "TBD"

    def test_today_shows_clock(self):
        now = datetime(2024, 3, 5, 18, 0)
        assert format_start_time("2024-03-05T09:07:00", now=now) == "09:07"

    def test_other_day(self):
        now = datetime(2024, 3, 5, 18, 0)
        assert format_start_time("2024-03-07T14:30:00", now=now) == "Mar 7, 14:30"

    def test_unparseable_returned_as_is(self):
        assert format_start_time("soon") == "soon"


class TestExpandPathPlaceholders:
    def test_job_id_and_name(self):
        result = expand_path_placeholders("slurm-%j-%x.out", "123_4", "train", "node01")
        assert result == "slurm-123_4-train.out"

    def test_array_tokens(self):
        assert expand_path_placeholders("%A/%a.out", "123_4", "train", "node01") == "123/4.out"

    def test_array_tokens_without_index(self):
        assert expand_path_placeholders("%A/%a.out", "123", "train", "node01") == "123/0.out"

    def test_replaces_every_occurrence(self):
        assert expand_path_placeholders("%j/%j.%j", "9", "n", "node01") == "9/9.9"

    def test_first_node_strips_range(self):
        assert expand_path_placeholders("%N.log", "1", "n", "gpu[01-04],cpu07") == "gpu.log"
        assert expand_path_placeholders("%N.log", "1", "n", "node05,node06") == "node05.log"

    def test_pending_node(self):
        assert expand_path_placeholders("%N.log", "1", "n", "N/A") == "PENDING_NODE.log"
        assert expand_path_placeholders("%N.log", "1", "n", "") == "PENDING_NODE.log"

    def test_task_and_percent(self):
        assert expand_path_placeholders("100%%-%t", "1", "n", "node01") == "100%-0"

    def test_escaped_percent_is_not_expanded_again(self):
        assert expand_path_placeholders("%%j", "42", "n", "node01") == "%j"

    def test_user(self):
        assert expand_path_placeholders("/home/%u/out", "1", "n", "node01") == (
            f"/home/{getpass.getuser()}/out"
        )

    def test_user_fallback(self, monkeypatch):
        def no_user():
            raise KeyError("uid not found")

        monkeypatch.setattr(getpass, "getuser", no_user)
        assert expand_path_placeholders("%u.out", "1", "n", "node01") == "user.out"

    @pytest.mark.parametrize("path", ["", "N/A"])
    def test_noop_on_missing(self, path):
        assert expand_path_placeholders(path, "1", "n", "node01") == path
