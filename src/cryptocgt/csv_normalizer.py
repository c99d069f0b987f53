# csv_normalizer.py
"""
CSV parsing and normalization to our Transaction schema.

Responsibilities:
- Read uploaded CSV bytes safely (a UTF-8 BOM from spreadsheet exports is tolerated).
- Normalize header names (case-insensitive).
- Validate required columns are present.
- Convert empty strings to None for optional fields.
- Validate each row using Pydantic (Transaction), returning:
  (valid_rows, errors) so the API can preview and/or persist.

This module is "pure" (no DB calls). It converts raw bytes -> typed objects.
"""

import csv
from io import BytesIO, TextIOWrapper
from typing import Any, Dict, List, Tuple
from pydantic import ValidationError
from .schemas import Transaction

# Expected CSV columns (case-insensitive):
# occurred_at,kind,asset,quantity,unit_price,fee,exchange,memo
REQUIRED_COLUMNS = {"occurred_at", "kind", "asset", "quantity", "unit_price"}
OPTIONAL_COLUMNS = {"fee", "exchange", "memo"}


def _normalize_headers(headers: List[str]) -> List[str]:
    """Lowercase and strip whitespace so headers are matched flexibly."""
    return [h.strip().lower() for h in headers]


def parse_csv(file_bytes: bytes, encoding: str = "utf-8-sig") -> Tuple[List[Transaction], List[Dict[str, Any]]]:
    """
    Parse CSV bytes into a list of Transaction objects.
    Returns:
      valid_rows: list[Transaction]
      errors: list of {row_number, error, raw_row}
    """
    valid: List[Transaction] = []
    errors: List[Dict[str, Any]] = []

    text_stream = TextIOWrapper(BytesIO(file_bytes), encoding=encoding, newline="")
    reader = csv.DictReader(text_stream)

    if reader.fieldnames is None:
        errors.append({"row_number": 0, "error": "CSV has no header", "raw_row": None})
        return valid, errors

    headers = _normalize_headers(reader.fieldnames)
    header_map = {orig: norm for orig, norm in zip(reader.fieldnames, headers)}

    missing = REQUIRED_COLUMNS - set(headers)
    if missing:
        errors.append({"row_number": 0, "error": f"Missing required columns: {sorted(missing)}", "raw_row": None})
        return valid, errors

    for i, row in enumerate(reader, start=2):  # start=2 because row 1 is the header
        normalized: Dict[str, Any] = {}
        for orig_key, value in row.items():
            if orig_key is None:
                # extra cells beyond the header
                continue
            key = header_map.get(orig_key, orig_key)
            if key not in REQUIRED_COLUMNS and key not in OPTIONAL_COLUMNS:
                continue
            value = value.strip() if isinstance(value, str) else value
            normalized[key] = None if (key in OPTIONAL_COLUMNS and value == "") else value

        try:
            valid.append(Transaction(**normalized))
        except ValidationError as ve:
            errors.append(
                {
                    "row_number": i,
                    "error": ve.errors(include_url=False, include_context=False),
                    "raw_row": normalized,
                }
            )

    return valid, errors
