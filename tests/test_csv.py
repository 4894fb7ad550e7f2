"""Tests for the CSV codec."""

import pytest
from datetime import date
from decimal import Decimal

from app.services.ledger_csv import (
    TEMPLATES,
    normalize_header,
    parse_amount,
    parse_bool,
    parse_date,
    read_rows,
    template_csv,
    write_csv,
)


@pytest.mark.parametrize("raw, expected", [
    ("code", "code"),
    ("Parent Code", "parent_code"),
    ("parentCode", "parent_code"),
    ("opening-balance", "opening_balance"),
    ("  Is Cash ", "is_cash"),
])
def test_normalize_header(raw, expected):
    assert normalize_header(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("2024-01-31", date(2024, 1, 31)),
    ("31/01/2024", date(2024, 1, 31)),
    ("Jan 31, 2024", date(2024, 1, 31)),
    ("31 Jan 2024", date(2024, 1, 31)),
    ("", None),
    ("yesterday", None),
])
def test_parse_date(raw, expected):
    assert parse_date(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("1,234.56", Decimal("1234.56")),
    ("$99", Decimal("99")),
    ("(20.00)", Decimal("-20.00")),
    ("-5", Decimal("-5")),
    ("", None),
    ("n/a", None),
])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_parse_bool():
    assert parse_bool("Yes") is True
    assert parse_bool("0") is False
    assert parse_bool("") is False
    assert parse_bool("maybe") is None


def test_read_rows_skips_blank_rows_and_strips_cells():
    content = "\ufeffCode, Name \n 1000 , Assets \n,\n\n1100,Cash\n".encode("utf-8")
    parsed = read_rows(content)

    assert parsed.headers == ["code", "name"]
    assert parsed.rows == [
        {"code": "1000", "name": "Assets"},
        {"code": "1100", "name": "Cash"},
    ]


def test_read_rows_pads_short_rows():
    parsed = read_rows("code,name,parent_code\n1000,Assets\n")
    assert parsed.rows == [{"code": "1000", "name": "Assets", "parent_code": ""}]


def test_read_rows_of_empty_content():
    parsed = read_rows(b"")
    assert parsed.headers == []
    assert parsed.rows == []


def test_templates_round_trip_through_reader():
    for entity, template in TEMPLATES.items():
        parsed = read_rows(template_csv(entity))
        assert parsed.headers == template.headers
        assert len(parsed.rows) == 1


def test_write_csv_blanks_none():
    content = write_csv(["a", "b"], [{"a": 1, "b": None}])
    assert content.splitlines() == ["a,b", "1,"]
