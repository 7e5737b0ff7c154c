"""Tests for cron validation and descriptions."""

import pytest

from bakker_api.cron import describe_cron, validate_cron


class TestValidateCron:
    @pytest.mark.parametrize(
        "expr",
        [
            "* * * * *",
            "0 */6 * * *",
            "30 2 * * 1-5",
            "0 0 1 jan *",
            "15 3 * * SUN,sat",
            "0 0 * * 7",
            "0-30/10 8-18 * * MON-FRI",
            "5/15 * * * *",
        ],
    )
    def test_accepts(self, expr):
        assert validate_cron(expr) is None

    def test_minute_out_of_range(self):
        error = validate_cron("60 * * * *")
        assert error == "60 is out of range 0-59 for minute"

    def test_zero_step(self):
        assert validate_cron("*/0 * * * *") == 'Invalid step value "0" in minute'

    def test_day_of_week_bounds(self):
        error = validate_cron("0 0 1 1 8-9")
        assert error is not None
        assert "day of week" in error

    @pytest.mark.parametrize(
        "expr, fragment",
        [
            ("", "required"),
            ("* * * *", "Expected 5 fields"),
            ("* * * * * *", "Expected 5 fields"),
            ("0 24 * * *", "hour"),
            ("0 0 0 * *", "day of month"),
            ("0 0 * 13 *", "month"),
            ("0 0 * foo *", "JAN-DEC"),
            ("0 0 * * MON-", "SUN-SAT"),
            ("5-1 * * * *", "start must be <= end"),
            ("*/61 * * * *", "exceeds range"),
            ("1,,2 * * * *", "Empty value"),
            ("* * * * *\n* * * * *", "single line"),
            ("١ * * * *", "minute"),
        ],
    )
    def test_rejects(self, expr, fragment):
        error = validate_cron(expr)
        assert error is not None
        assert fragment in error

    def test_first_violation_wins(self):
        assert "minute" in validate_cron("99 99 * * *")


class TestDescribeCron:
    @pytest.mark.parametrize(
        "expr, description",
        [
            ("* * * * *", "Every minute"),
            ("*/15 * * * *", "Every 15 minutes"),
            ("0 * * * *", "Every hour"),
            ("0 */6 * * *", "Every 6 hours"),
            ("30 * * * *", "At :30 every hour"),
            ("30 2 * * *", "At 02:30"),
            ("0 8,20 * * *", "At 08:00, 20:00"),
            ("0 3 * * 1-5", "At 03:00 on weekdays"),
            ("0 3 * * 0,6", "At 03:00 on weekends"),
            ("0 3 * * MON", "At 03:00 on Monday"),
            ("0 0 1 * *", "At 00:00 on the 1st"),
            ("0 0 1 jan *", "At 00:00 on the 1st in January"),
        ],
    )
    def test_descriptions(self, expr, description):
        assert describe_cron(expr) == description

    def test_invalid_has_no_description(self):
        assert describe_cron("60 * * * *") is None
