"""Tests for storage table naming."""

import pytest

from sqlmate.table_name import (
    build_storage_table_name,
    display_name_from_filename,
    is_valid_table_name,
    sanitize_table_name,
)

FILENAMES = [
    "Sales.csv",
    "my orders (2024).csv",
    "2024_report.csv",
    "select.csv",
    "Table.CSV",
    "___.csv",
    ".csv",
    "",
    "고객 목록.csv",
    "a" * 100 + ".csv",
    "ab" * 31 + "_x" * 10 + ".csv",
    "archive.tar.gz",
    "--weird--name--.txt",
]


class TestSanitizeTableName:
    def test_lowercases_and_replaces_symbols(self):
        assert sanitize_table_name("My Orders (2024).csv") == "my_orders_2024"

    def test_strips_only_last_extension(self):
        assert sanitize_table_name("archive.tar.gz") == "archive_tar"

    def test_leading_digit_gets_prefix(self):
        assert sanitize_table_name("2024_report.csv") == "t_2024_report"

    def test_reserved_word_gets_prefix(self):
        assert sanitize_table_name("Select.csv") == "t_select"
        assert sanitize_table_name("order.csv") == "t_order"

    def test_empty_falls_back_to_default(self):
        assert sanitize_table_name("") == "dataset"
        assert sanitize_table_name("___.csv") == "dataset"
        assert sanitize_table_name("고객.csv") == "dataset"

    def test_truncates_to_63_without_trailing_underscore(self):
        name = sanitize_table_name("a" * 62 + "_b.csv")
        assert len(name) <= 63
        assert not name.endswith("_")
        assert name == "a" * 62

    @pytest.mark.parametrize("filename", FILENAMES)
    def test_output_is_always_valid(self, filename):
        assert is_valid_table_name(sanitize_table_name(filename))

    @pytest.mark.parametrize("filename", FILENAMES)
    def test_idempotent(self, filename):
        once = sanitize_table_name(filename)
        assert sanitize_table_name(once) == once


class TestIsValidTableName:
    @pytest.mark.parametrize("name", ["orders", "Orders_2", "_x", "t_1"])
    def test_valid(self, name):
        assert is_valid_table_name(name)

    @pytest.mark.parametrize("name", ["", "1orders", "my-table", "a b", 'x"y', "orders\n"])
    def test_invalid(self, name):
        assert not is_valid_table_name(name)


def test_display_name_drops_extension():
    assert display_name_from_filename("Sales.csv") == "Sales"
    assert display_name_from_filename("Sales") == "Sales"


def test_storage_name_has_random_suffix():
    name = build_storage_table_name("Sales.csv", "ab12cd34-0000-4000-8000-000000000000")
    assert name == "dataset_sales_ab12cd34"
    assert is_valid_table_name(name)
    assert name != display_name_from_filename("Sales.csv")
