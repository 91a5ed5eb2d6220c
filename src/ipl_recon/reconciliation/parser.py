"""Parsing of exported bank statement files."""

import csv
import logging
import math
import re
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from .models import (
    HistoricalVerification,
    ParseResult,
    RowError,
    RowErrorKind,
    TransactionCandidate,
    TransactionType,
)

logger = logging.getLogger(__name__)

MIN_COLUMNS = 6
HISTORICAL_COLUMNS = 15

# Spreadsheet serial dates count days from 1899-12-30, which absorbs the
# spreadsheet's phantom 29 Feb 1900.
SERIAL_EPOCH = date(1899, 12, 30)
SERIAL_MIN = 20000
SERIAL_MAX = 70000

FALLBACK_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%Y-%m-%dT%H:%M:%S",
)

_NON_NUMERIC = re.compile(r"[^\d.-]")
_CONFIRMED_FLAGS = {"1", "ok"}
_HEADER = re.compile(r"\b(tanggal|date)\b", re.IGNORECASE)


def split_columns(line: str) -> List[str]:
    """Split one CSV line into trimmed columns, honouring double quotes."""
    row = next(csv.reader([line], skipinitialspace=True), [])
    return [column.strip() for column in row]


def parse_amount(raw: Optional[str]) -> Optional[float]:
    """Parse a money column after stripping everything but digits, dots and minus.

    Returns:
        The amount, or None when the column is empty or not a finite number.
    """
    if raw is None or not raw.strip():
        return None
    cleaned = _NON_NUMERIC.sub("", raw)
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_transaction_type(raw: Optional[str], amount: Optional[float]) -> Optional[TransactionType]:
    """Read CR/DB from its column, falling back to the amount's sign."""
    flag = (raw or "").strip().upper()
    if flag in (TransactionType.CREDIT.value, TransactionType.DEBIT.value):
        return TransactionType(flag)
    if amount is None:
        return None
    return TransactionType.CREDIT if amount >= 0 else TransactionType.DEBIT


def _year_from_part(part: str) -> Optional[int]:
    part = part.strip()
    if not part.isdigit():
        return None
    value = int(part)
    if len(part) == 2:
        return 2000 + value
    if len(part) == 4 and value > 1900:
        return value
    return None


def parse_statement_date(
    raw: Optional[str],
    year: Optional[int] = None,
    force_month: Optional[int] = None,
) -> Optional[date]:
    """Parse a statement date column.

    Handles the day/month layout used by Indonesian bank exports (``'02/01``
    with a leading apostrophe), spreadsheet serial numbers, and a few
    unambiguous fallback formats.

    Args:
        raw: Date column text.
        year: Year to use for day/month dates. When omitted, a third
            ``/``-separated part is used, then the current year.
        force_month: Overrides the month of day/month dates.

    Returns:
        The parsed date, or None when nothing matched.
    """
    if not raw:
        return None
    cleaned = raw.replace("'", "").strip()
    if not cleaned:
        return None

    if cleaned.isdigit():
        serial = int(cleaned)
        if SERIAL_MIN < serial < SERIAL_MAX:
            return SERIAL_EPOCH + timedelta(days=serial)

    parts = cleaned.split("/")
    if len(parts) >= 2 and parts[0].strip().isdigit() and parts[1].strip().isdigit():
        day = int(parts[0])
        month = force_month or int(parts[1])
        if 1 <= day <= 31 and 1 <= month <= 12:
            target_year = year
            if target_year is None and len(parts) >= 3:
                target_year = _year_from_part(parts[2])
            if target_year is None:
                target_year = date.today().year
            try:
                return date(target_year, month, day)
            except ValueError:
                return None

    for fmt in FALLBACK_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def validate_transaction(
    description: str,
    amount: Optional[float],
    transaction_date: Optional[date],
) -> List[str]:
    """Return the structural problems of a parsed row (empty when valid)."""
    problems: List[str] = []
    if transaction_date is None:
        problems.append("Transaction date is required")
    if not description or not description.strip():
        problems.append("Transaction description is required")
    if amount is None:
        problems.append("Transaction amount is required")
    elif not math.isfinite(amount) or amount <= 0:
        problems.append("Transaction amount must be a positive number")
    return problems


class StatementParser:
    """Parser turning statement text into transaction candidates.

    Expected columns: ``Tanggal, Keterangan, Cabang, Jumlah, CR/DB, Saldo``,
    optionally followed by the manual verification columns ``BAGI, RUJUKAN,
    NoRumahIndex, TIPE, NO RUMAH, BULAN, TAHUN, RT, OK``.
    """

    def __init__(
        self,
        year: Optional[int] = None,
        force_month: Optional[int] = None,
    ):
        """Initialize the parser.

        Args:
            year: Target year for dates written as day/month. Ignored unless > 1900.
            force_month: Month forced onto every day/month date. Ignored unless 1-12.
        """
        self.year = year if year and year > 1900 else None
        self.force_month = force_month if force_month and 1 <= force_month <= 12 else None

    @staticmethod
    def _is_header(line: str) -> bool:
        return _HEADER.search(line) is not None

    def _numbered_lines(self, content: str) -> List[Tuple[int, str]]:
        lines = [
            (number, line.strip())
            for number, line in enumerate(content.splitlines(), start=1)
            if line.strip()
        ]
        if lines and self._is_header(lines[0][1]):
            lines = lines[1:]
        return lines

    def parse(self, content: str) -> ParseResult:
        """Parse a whole statement.

        Bad rows never abort parsing; they are reported in ``errors``.

        Args:
            content: Decoded file content.

        Returns:
            ParseResult with valid transactions, historical verification
            records and row errors.
        """
        result = ParseResult()

        for number, line in self._numbered_lines(content):
            columns = split_columns(line)
            if len(columns) < MIN_COLUMNS:
                result.errors.append(RowError(
                    line=number,
                    kind=RowErrorKind.PARSE,
                    message=f"Insufficient columns (minimum {MIN_COLUMNS} required)",
                ))
                continue

            transaction = self._parse_row(number, columns, result.errors)
            if transaction is None:
                continue
            result.transactions.append(transaction)

            if len(columns) >= HISTORICAL_COLUMNS:
                record = self._parse_historical(transaction, columns)
                if record is not None:
                    result.historical_verifications.append(record)

        if result.errors:
            logger.warning(f"Skipped {len(result.errors)} statement rows")
        logger.info(
            f"Parsed {len(result.transactions)} transactions and "
            f"{len(result.historical_verifications)} historical verifications"
        )
        return result

    def _parse_row(
        self,
        number: int,
        columns: List[str],
        errors: List[RowError],
    ) -> Optional[TransactionCandidate]:
        raw_date, description, reference, raw_amount, raw_type, raw_balance = columns[:MIN_COLUMNS]

        amount = parse_amount(raw_amount)
        balance = parse_amount(raw_balance)
        transaction_type = parse_transaction_type(raw_type, amount)

        transaction_date = parse_statement_date(raw_date, self.year, self.force_month)
        if transaction_date is None:
            errors.append(RowError(
                line=number,
                kind=RowErrorKind.PARSE,
                message=f"Invalid date format: {raw_date}",
            ))
            return None

        problems = validate_transaction(description, amount, transaction_date)
        if problems:
            errors.append(RowError(
                line=number,
                kind=RowErrorKind.VALIDATION,
                message=", ".join(problems),
            ))
            return None

        logger.debug(f"Line {number}: {transaction_date} {amount} {transaction_type.value}")
        return TransactionCandidate(
            line=number,
            transaction_date=transaction_date,
            description=description.strip(),
            amount=amount,
            balance=balance,
            reference=reference or None,
            transaction_type=transaction_type,
        )

    def _parse_historical(
        self,
        transaction: TransactionCandidate,
        columns: List[str],
    ) -> Optional[HistoricalVerification]:
        split_amount, reference, house_index, entry_type, house_number, month, year, rt, ok = (
            columns[6:HISTORICAL_COLUMNS]
        )
        if not house_number or ok.lower() not in _CONFIRMED_FLAGS:
            return None

        if not month and self.force_month:
            month = f"{self.force_month:02d}"

        return HistoricalVerification(
            transaction=transaction,
            split_amount=parse_amount(split_amount) or 0,
            reference=reference,
            house_index=house_index,
            entry_type=entry_type,
            house_number=house_number,
            month=month,
            year=int(year) if year.isdigit() else (self.year or transaction.transaction_date.year),
            rt=rt,
            confirmed=True,
        )


def parse_statement(
    content: str,
    year: Optional[int] = None,
    month: Optional[int] = None,
) -> ParseResult:
    """Parse statement text with optional year and forced-month hints."""
    return StatementParser(year=year, force_month=month).parse(content)


def decode_statement(raw: bytes) -> str:
    """Decode uploaded bytes, tolerating a BOM and legacy single-byte exports."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.warning("Statement is not valid UTF-8, decoding as latin-1")
        return raw.decode("latin-1")
