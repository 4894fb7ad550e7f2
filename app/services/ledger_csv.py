"""CSV codec for ledger imports, exports and downloadable templates."""

import csv
import io
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    "%Y-%m-%d",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%d/%m/%y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
]

TRUE_VALUES = {"true", "yes", "y", "1", "t"}
FALSE_VALUES = {"false", "no", "n", "0", "f", ""}


@dataclass
class CsvTemplate:
    """Headers and an example row for a downloadable import template."""
    headers: List[str]
    example: List[str]


TEMPLATES: Dict[str, CsvTemplate] = {
    "accounts": CsvTemplate(
        headers=["code", "name", "type", "normal_balance", "parent_code", "description", "opening_balance", "is_cash"],
        example=["5110", "Office Supplies", "EXPENSE", "DEBIT", "5000", "Stationery and consumables", "0", "false"],
    ),
    "journal": CsvTemplate(
        headers=["date", "reference", "description", "account_code", "debit", "credit", "narration"],
        example=["2024-01-31", "JV-001", "Monthly rent", "5200", "1500.00", "0", "Rent for January"],
    ),
    "expenses": CsvTemplate(
        headers=["reference", "date", "contact_id", "total_amount", "category", "account_code",
                 "payment_mode", "due_date", "tax_amount", "narration"],
        example=["EXP-001", "2024-01-15", "C1", "250.00", "5100", "", "CASH", "", "", "Courier charges"],
    ),
    "bills": CsvTemplate(
        headers=["reference", "date", "contact_id", "total_amount", "category", "account_code",
                 "payment_mode", "due_date", "tax_amount", "narration"],
        example=["BILL-001", "2024-01-10", "V1", "1200.00", "5100", "", "CREDIT", "2024-02-09", "", "Supplier bill"],
    ),
    "invoices": CsvTemplate(
        headers=["reference", "date", "contact_id", "total_amount", "category", "account_code",
                 "payment_mode", "due_date", "tax_amount", "narration"],
        example=["INV-001", "2024-01-12", "C1", "3000.00", "4100", "", "CREDIT", "2024-02-11", "", "Consulting"],
    ),
}


@dataclass
class ParsedCsv:
    """Rows of a decoded CSV file keyed by normalized header."""
    headers: List[str]
    rows: List[Dict[str, str]] = field(default_factory=list)


def decode_content(content: bytes) -> str:
    """Decode bytes to string with multiple encoding attempts."""
    for encoding in ("utf-8-sig", "utf-8", "latin-1", "cp1252"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    return content.decode("utf-8", errors="replace")


def normalize_header(name: str) -> str:
    """'Parent Code', 'parentCode' and 'parent-code' all become 'parent_code'."""
    name = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", (name or "").strip())
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


def read_rows(content: bytes | str) -> ParsedCsv:
    """
    Parse CSV content into dict rows.

    Cell values are stripped; rows whose cells are all empty are dropped.
    """
    text = decode_content(content) if isinstance(content, bytes) else content
    reader = csv.reader(io.StringIO(text))
    try:
        raw_headers = next(reader)
    except StopIteration:
        return ParsedCsv(headers=[])

    headers = [normalize_header(h) for h in raw_headers]
    parsed = ParsedCsv(headers=headers)
    for values in reader:
        if not any((v or "").strip() for v in values):
            continue
        parsed.rows.append({
            header: (values[i].strip() if i < len(values) else "")
            for i, header in enumerate(headers)
            if header
        })
    return parsed


def parse_date(value: Any) -> Optional[date]:
    """Parse a date string with multiple format attempts."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None

    value = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue

    logger.warning(f"Could not parse date: {value}")
    return None


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse an amount string, dropping currency symbols and thousands separators."""
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value

    cleaned = re.sub(r"[^\d.\-\(\)]", "", str(value).strip())

    # Handle parentheses as negative
    if cleaned.startswith("(") and cleaned.endswith(")"):
        cleaned = "-" + cleaned[1:-1]

    try:
        return Decimal(cleaned)
    except InvalidOperation:
        logger.warning(f"Could not parse amount: {value}")
        return None


def parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def write_csv(headers: List[str], rows: Iterable[Dict[str, Any]]) -> str:
    """Serialize dict rows in header order; None becomes an empty cell."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if row.get(h) is None else row.get(h) for h in headers])
    return buffer.getvalue()


def template_csv(entity: str) -> str:
    """
    Downloadable CSV template (header plus one example row).

    Raises:
        KeyError: If no template exists for the entity
    """
    template = TEMPLATES[entity]
    return write_csv(template.headers, [dict(zip(template.headers, template.example))])
