"""
Tests for format checks and display formatters.
"""

from datetime import date, datetime

import pytest

from validators import (
    format_date,
    format_phone,
    is_valid_email,
    is_valid_phone,
    is_valid_zip_code,
    parse_date,
    sanitize_file_name,
)


class TestFormatChecks:

    @pytest.mark.parametrize("value", ["jane@x.com", "a.b+c@example.org"])
    def test_valid_emails(self, value):
        assert is_valid_email(value)

    @pytest.mark.parametrize("value", ["", "jane", "jane@x", "jane @x.com"])
    def test_invalid_emails(self, value):
        assert not is_valid_email(value)

    def test_phone_accepts_separators(self):
        assert is_valid_phone("(555) 123-4567")
        assert is_valid_phone("+1 555 123 4567")

    def test_phone_rejects_short_or_letters(self):
        assert not is_valid_phone("555-1234")
        assert not is_valid_phone("555-CALL-NOW1")

    def test_zip_codes(self):
        assert is_valid_zip_code("78701")
        assert is_valid_zip_code("78701-1234")
        assert not is_valid_zip_code("7870")


class TestDates:

    def test_parse_iso_and_us_formats(self):
        assert parse_date("1990-03-15") == date(1990, 3, 15)
        assert parse_date("03/15/1990") == date(1990, 3, 15)
        assert parse_date("1990-03-15T00:00:00Z") == date(1990, 3, 15)

    def test_parse_passes_through_dates(self):
        assert parse_date(datetime(2020, 1, 2, 3, 4)) == date(2020, 1, 2)

    def test_parse_rejects_garbage(self):
        assert parse_date("not a date") is None
        assert parse_date(42) is None

    def test_format_date(self):
        assert format_date("1990-03-15") == "03/15/1990"
        assert format_date(date(2001, 12, 9)) == "12/09/2001"
        assert format_date("someday") == ""


class TestDisplayFormatters:

    def test_format_ten_digit_phone(self):
        assert format_phone("5551234567") == "(555) 123-4567"

    def test_format_eleven_digit_phone(self):
        assert format_phone("15551234567") == "+1 (555) 123-4567"

    def test_other_lengths_unchanged(self):
        assert format_phone("12345") == "12345"

    def test_sanitize_file_name(self):
        assert sanitize_file_name("Intake Form (v2)") == "Intake_Form__v2_"
        assert sanitize_file_name("O'Neil") == "O_Neil"
        assert sanitize_file_name("report-1.final_x") == "report-1.final_x"
