"""
CSV export and import of a book's transactions.

Columns: id, date, user_name, type, amount, category

Export writes the category *name* (expenses only). Import resolves it
back by exact name; an unknown name imports as an uncategorized
expense. Row ids are kept, so importing the same file twice adds
nothing the second time.
"""

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

import structlog
from pydantic import ValidationError

from sumbook.models import Category, Transaction, TransactionForm, TransactionType


logger = structlog.get_logger(__name__)

EXPORT_COLUMNS = ["id", "date", "user_name", "type", "amount", "category"]
REQUIRED_COLUMNS = ("id", "date", "user_name", "type", "amount")


class CsvFormatError(ValueError):
    """The file can't be read as a transactions CSV at all."""
    pass


@dataclass
class ImportedRow:
    id: str
    form: TransactionForm


@dataclass
class ImportResult:
    rows: list[ImportedRow] = field(default_factory=list)
    duplicates: int = 0
    invalid: int = 0

    @property
    def skipped(self) -> int:
        return self.duplicates + self.invalid


def export_filename(store_name: str) -> str:
    safe = re.sub(r"[^a-z0-9]", "_", store_name, flags=re.IGNORECASE).lower()
    return f"sumbook_transactions_{safe}.csv"


def _export_category(tx: Transaction, names: dict[str, str]) -> str:
    if tx.type != TransactionType.EXPENSE:
        return ""
    if not tx.category_id:
        return "N/A"
    return names.get(tx.category_id, "Uncategorized")


def export_transactions_csv(
    transactions: Iterable[Transaction],
    categories: Iterable[Category],
) -> str:
    """Render transactions as CSV text (header row included)."""
    names = {c.id: c.name for c in categories}
    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(EXPORT_COLUMNS)

    for tx in transactions:
        writer.writerow([
            tx.id,
            tx.date.isoformat(),
            tx.user_name,
            tx.type.value,
            repr(tx.amount),
            _export_category(tx, names),
        ])

    return out.getvalue()


def parse_transactions_csv(
    text: str,
    existing_ids: Iterable[str],
    categories: Iterable[Category],
) -> ImportResult:
    """
    Parse CSV text into transaction forms ready to be added.

    Skips rows whose id already exists (or repeats within the file).
    Rows missing a required field, whose id contains "/", or that fail
    validation are counted as invalid.

    Raises:
        CsvFormatError: If the header lacks a required column
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    header = [name.strip() for name in (reader.fieldnames or [])]
    missing = [col for col in REQUIRED_COLUMNS if col not in header]
    if missing:
        raise CsvFormatError(f"Missing column(s): {', '.join(missing)}")
    reader.fieldnames = header

    seen = set(existing_ids)
    by_name = {c.name: c.id for c in categories}
    result = ImportResult()

    for line, row in enumerate(reader, start=2):
        row = {k: (v or "").strip() for k, v in row.items() if k}
        row_id = row.get("id", "")

        if row_id in seen:
            result.duplicates += 1
            continue

        if not all(row.get(col) for col in REQUIRED_COLUMNS):
            logger.warning("csv_row_incomplete", line=line, row_id=row_id)
            result.invalid += 1
            continue

        # The id becomes a document path segment
        if "/" in row_id:
            logger.warning("csv_row_bad_id", line=line, row_id=row_id)
            result.invalid += 1
            continue

        tx_type = row["type"].lower()
        category_id: Optional[str] = None
        if tx_type == TransactionType.EXPENSE.value:
            category_id = by_name.get(row.get("category", ""))

        try:
            form = TransactionForm(
                user_name=row["user_name"],
                amount=row["amount"],
                type=tx_type,
                category_id=category_id,
                date=row["date"],
            )
        except ValidationError as e:
            logger.warning("csv_row_invalid", line=line, row_id=row_id, error=str(e))
            result.invalid += 1
            continue

        seen.add(row_id)
        result.rows.append(ImportedRow(id=row_id, form=form))

    return result
