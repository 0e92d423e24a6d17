"""
Transfer Package

CSV import and export of transactions.
"""

from sumbook.transfer.csv_transfer import (
    CsvFormatError,
    ImportedRow,
    ImportResult,
    export_filename,
    export_transactions_csv,
    parse_transactions_csv,
)

__all__ = [
    "CsvFormatError",
    "ImportedRow",
    "ImportResult",
    "export_filename",
    "export_transactions_csv",
    "parse_transactions_csv",
]
