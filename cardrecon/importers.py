from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import hashlib
import io
import re
import unicodedata

import pandas as pd

from .amounts import to_amount
from .config import settings
from .errors import FormatError

# date,title,amount - the card issuer's export. "description" is accepted for "title".
REQUIRED_COLUMNS = ("date", "title", "amount")
COLUMN_ALIASES = {"description": "title"}

PURCHASE = "purchase"
REFUND = "refund"
AGGREGATE_PAYMENT = "aggregate_payment"

# the issuer writes "Parcela 1/3"; a bare "03/11" is a date, not an installment
INSTALLMENT_RE = re.compile(r"\bparcela\s*(\d{1,3})\s*/\s*(\d{1,3})(?![\d/])", re.IGNORECASE)

@dataclass(frozen=True)
class StatementLine:
    line_number: int
    date: date
    description: str
    amount: Decimal
    role: str
    installment_current: int | None = None
    installment_total: int | None = None


def fold(text: str) -> str:
    """Lowercase and strip diacritics: 'Pagamento Recebído' -> 'pagamento recebido'."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.casefold().split())


def is_payment_marker(description: str, markers=None) -> bool:
    markers = settings.payment_markers if markers is None else markers
    folded = fold(description)
    return any(fold(m) in folded for m in markers)


def parse_installment(description: str) -> tuple[int, int] | None:
    for m in INSTALLMENT_RE.finditer(description):
        current, total = int(m.group(1)), int(m.group(2))
        if 1 <= current <= total:
            return current, total
    return None


def classify_line(line_number: int, d: date, description: str, amount: Decimal, markers=None) -> StatementLine:
    if is_payment_marker(description, markers):
        return StatementLine(line_number, d, description, amount, AGGREGATE_PAYMENT)

    role = PURCHASE if amount >= 0 else REFUND
    installment = parse_installment(description)
    if installment:
        current, total = installment
        return StatementLine(line_number, d, description, amount, role, current, total)

    return StatementLine(line_number, d, description, amount, role)


def _normalize_columns(columns) -> list[str]:
    cols = [str(c).strip().lower() for c in columns]
    return [COLUMN_ALIASES.get(c, c) for c in cols]


def read_statement_csv(raw_text: str, markers=None) -> list[StatementLine]:
    """
    Parses a card statement export into classified lines.
    Only the `date,title,amount` layout is accepted; anything else raises FormatError.
    Line numbers count the header as line 1.
    """
    if raw_text is None or not raw_text.strip():
        raise FormatError("statement is empty")

    try:
        df = pd.read_csv(io.StringIO(raw_text), dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.ParserError as e:
        raise FormatError(f"unreadable statement: {e}") from e
    except pd.errors.EmptyDataError as e:
        raise FormatError("statement is empty") from e

    df.columns = _normalize_columns(df.columns)
    if sorted(df.columns) != sorted(REQUIRED_COLUMNS):
        raise FormatError(
            f"invalid format: expected columns {list(REQUIRED_COLUMNS)}, got {list(df.columns)}",
            line=1,
        )

    if df.empty:
        raise FormatError("no transactions in statement")

    # header is line 1; blank lines are not counted
    df["line"] = df.index + 2
    df["title"] = df["title"].str.strip()
    parsed_dates = pd.to_datetime(df["date"].str.strip(), format="%Y-%m-%d", errors="coerce")

    lines: list[StatementLine] = []
    for row, parsed in zip(df.itertuples(index=False), parsed_dates):
        if pd.isna(parsed):
            raise FormatError(f"invalid date {row.date!r}, expected YYYY-MM-DD", line=row.line)
        if not row.title:
            raise FormatError("empty description", line=row.line)
        try:
            amount = to_amount(row.amount)
        except ValueError as e:
            raise FormatError(str(e), line=row.line) from e

        lines.append(classify_line(row.line, parsed.date(), row.title, amount, markers))

    return lines


def statement_fingerprint(lines: list[StatementLine]) -> str:
    """Content hash of the line set; row order does not matter."""
    canonical = sorted(f"{l.date.isoformat()}|{l.description}|{l.amount}" for l in lines)
    return hashlib.sha256("\n".join(canonical).encode("utf-8")).hexdigest()
