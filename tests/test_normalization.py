"""Tests for date, email, name and number normalization."""

import logging
from datetime import date, datetime
from decimal import Decimal

import pytest

from sales_import.config import settings
from sales_import.pipelines.normalization import (
    as_number,
    as_positive_int,
    display_name_from_email,
    format_export_date,
    is_paid,
    is_valid_email,
    normalize_date,
    normalize_email,
    parse_iso_date,
)


class TestNormalizeDate:

    def test_day_month_year(self):
        assert normalize_date("15/01/2024") == "2024-01-15"

    def test_single_digit_parts(self):
        assert normalize_date("5/3/2024") == "2024-03-05"

    def test_slash_date_with_time_suffix(self):
        assert normalize_date("15/01/2024 10:30:00") == "2024-01-15"

    def test_iso_input_passes_through(self):
        assert normalize_date("2024-02-29") == "2024-02-29"

    def test_iso_datetime(self):
        assert normalize_date("2024-03-01T12:00:00Z") == "2024-03-01"

    def test_unparseable_returns_none_and_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="sales_import.pipelines.normalization"):
            assert normalize_date("not-a-date") is None
        assert any(record.levelno == logging.WARNING for record in caplog.records)

    def test_impossible_slash_date_returns_none(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert normalize_date("31/02/2024") is None

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_empty_values_are_absent_without_warning(self, value, caplog):
        with caplog.at_level(logging.WARNING):
            assert normalize_date(value) is None
        assert not caplog.records

    def test_parse_iso_date(self):
        assert parse_iso_date("2024-01-15") == date(2024, 1, 15)
        assert parse_iso_date(None) is None

    def test_format_export_date(self):
        assert format_export_date(date(2024, 1, 5)) == "05/01/2024"
        assert format_export_date(datetime(2024, 12, 31, 8, 0)) == "31/12/2024"
        assert format_export_date(None) is None


class TestDisplayName:

    def test_dots_become_spaces_and_title_case(self):
        assert display_name_from_email("a.b@x.com") == "A B"

    def test_underscores_and_dashes(self):
        assert display_name_from_email("maria_jose-PEREZ@empresa.cl") == "Maria Jose Perez"

    def test_empty_local_part_uses_default(self):
        assert display_name_from_email("@x.com") == "Usuario"

    def test_missing_email_uses_default(self):
        assert display_name_from_email(None) == "Usuario"
        assert display_name_from_email("", default="Anon") == "Anon"

    def test_default_comes_from_settings(self, monkeypatch):
        monkeypatch.setattr(settings.imports, "default_display_name", "Sin nombre")
        assert display_name_from_email(None) == "Sin nombre"
        assert display_name_from_email("_@x.com") == "Sin nombre"


class TestEmails:

    def test_normalize_trims_and_lowercases(self):
        assert normalize_email("  A.B@X.com ") == "a.b@x.com"

    @pytest.mark.parametrize("value", [None, "", "   ", 42])
    def test_normalize_rejects_empty_and_non_strings(self, value):
        assert normalize_email(value) is None

    def test_email_shape(self):
        assert is_valid_email("a.b@x.com")
        assert not is_valid_email("no-at-sign")
        assert not is_valid_email("a@b")


class TestNumbers:

    def test_paid_flag(self):
        assert is_paid(0) is False
        assert is_paid(15000) is True
        assert is_paid(None) is False
        assert is_paid("15000") is True
        assert is_paid("abc") is False
        assert is_paid(-5) is False
        assert is_paid(True) is False

    def test_as_number(self):
        assert as_number("12.50") == Decimal("12.50")
        assert as_number(3) == Decimal(3)
        assert as_number("") is None
        assert as_number("NaN") is None

    def test_as_positive_int(self):
        assert as_positive_int(334) == 334
        assert as_positive_int("334") == 334
        assert as_positive_int(334.0) == 334
        assert as_positive_int("abc") is None
        assert as_positive_int(0) is None
        assert as_positive_int(-3) is None
        assert as_positive_int(3.5) is None
        assert as_positive_int(None) is None

    @pytest.mark.parametrize("value", ["1e999999999", "9" * 40, "1E+19"])
    def test_as_positive_int_rejects_out_of_range_ids(self, value):
        assert as_positive_int(value) is None

    def test_as_positive_int_upper_bound(self):
        assert as_positive_int("1E+18") == 10 ** 18
        assert as_positive_int(9223372036854775807) == 9223372036854775807
