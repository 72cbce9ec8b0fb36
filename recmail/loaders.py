from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd
from loguru import logger

from .config import (
    DEFAULT_FIRST_NAME,
    DEFAULT_LAST_NAME,
    DEFAULT_SEGMENT,
    RECIPIENTS_PATH,
    SKUS_PATH,
)
from .errors import DataSourceUnavailable, MalformedRecord
from .pipeline_types import Recipient


# ---------------------------
# Column detection / standardization
# ---------------------------

# Exports from different CRMs spell these differently; first match wins.
COLUMN_CANDIDATES: Dict[str, List[str]] = {
    "customer_id": [
        "id",
        "customer_id",
        "CustomerId",
        "customer id",
        "Customer ID",
    ],
    "email": [
        "email",
        "Email",
        "email_address",
        "Email Address",
        "e-mail",
    ],
    "first_name": [
        "first_name",
        "FirstName",
        "First Name",
    ],
    "last_name": [
        "last_name",
        "LastName",
        "Last Name",
    ],
    "segment": [
        "segment",
        "Segment",
    ],
    "sku": [
        "sku",
        "SKU",
        "Sku",
        "product_id",
        "ProductId",
    ],
}

_INT_RE = re.compile(r"^[+-]?\d+$")


def _standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename source columns to the canonical names in COLUMN_CANDIDATES.
    """
    col_map: Dict[str, str] = {}
    lower_to_original = {str(c).strip().lower(): c for c in df.columns}

    for canon, candidates in COLUMN_CANDIDATES.items():
        for candidate in candidates:
            if candidate in df.columns:
                col_map[candidate] = canon
                break
            cand_lower = candidate.lower()
            if cand_lower in lower_to_original:
                col_map[lower_to_original[cand_lower]] = canon
                break

    return df.rename(columns=col_map)


def _read_table(path: Path, positional: Sequence[str]) -> pd.DataFrame:
    """
    Read a small CSV as strings, with or without a header row.

    A first row whose leading cell is not an integer is taken as the header;
    otherwise columns are named positionally from ``positional``.  A
    ``_line`` column keeps the 1-based source line for error messages.
    """
    path = Path(path)
    logger.info("Loading {}", path)
    try:
        df = pd.read_csv(
            path,
            header=None,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            skip_blank_lines=True,
        )
    except FileNotFoundError as e:
        raise DataSourceUnavailable(f"Source file not found: {path}") from e
    except pd.errors.EmptyDataError:
        logger.warning("Source file {} is empty", path)
        return pd.DataFrame(columns=list(positional) + ["_line"])
    except pd.errors.ParserError as e:
        raise MalformedRecord(f"Could not parse {path}: {e}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise DataSourceUnavailable(f"Could not read {path}: {e}") from e

    # short rows come back padded with NaN even with keep_default_na=False
    df = df.fillna("").apply(lambda col: col.str.strip())
    df["_line"] = range(1, len(df) + 1)
    if df.empty:
        return df

    first_cell = str(df.iloc[0, 0])
    if not _INT_RE.match(first_cell):
        header = [str(v) for v in df.iloc[0, :-1]]
        df = df.iloc[1:].reset_index(drop=True)
        df.columns = header + ["_line"]
    else:
        names = list(positional)[: df.shape[1] - 1]
        extra = [f"col_{i}" for i in range(len(names), df.shape[1] - 1)]
        df.columns = names + extra + ["_line"]

    return _standardize_columns(df)


def _parse_non_negative_int(value, field: str, line: int, path: Path) -> int:
    text = str(value).strip()
    if not _INT_RE.match(text):
        raise MalformedRecord(f"{path}:{line}: {field} {text!r} is not an integer")
    number = int(text)
    if number < 0:
        raise MalformedRecord(f"{path}:{line}: {field} {number} is negative")
    return number


# ---------------------------
# Public loaders
# ---------------------------

def load_recipients(
    path: Path = RECIPIENTS_PATH,
    *,
    first_name: str = DEFAULT_FIRST_NAME,
    last_name: str = DEFAULT_LAST_NAME,
    segment: str = DEFAULT_SEGMENT,
) -> List[Recipient]:
    """
    Load recipients from an (id, email) CSV.

    Optional first_name / last_name / segment columns override the defaults
    per row.  Blank emails are kept as ``""``; the recommendation step decides
    who gets scored.  An empty file yields an empty list.
    """
    df = _read_table(path, positional=["customer_id", "email"])
    if df.empty:
        logger.info("Loaded 0 recipients from {}", path)
        return []

    missing = [c for c in ("customer_id", "email") if c not in df.columns]
    if missing:
        raise MalformedRecord(f"{path}: missing required column(s) {missing}")

    def _opt(row: pd.Series, col: str, default: str) -> str:
        value = row.get(col)
        return str(value) if isinstance(value, str) and value else default

    recipients: List[Recipient] = []
    for _, row in df.iterrows():
        line = int(row["_line"])
        recipients.append(
            Recipient(
                email=str(row["email"] or ""),
                customer_id=_parse_non_negative_int(row["customer_id"], "id", line, Path(path)),
                first_name=_opt(row, "first_name", first_name),
                last_name=_opt(row, "last_name", last_name),
                segment=_opt(row, "segment", segment),
            )
        )

    logger.info("Loaded {} recipients from {}", len(recipients), path)
    return recipients


def load_skus(path: Path = SKUS_PATH) -> List[int]:
    """
    Load candidate product SKUs from a one-column CSV (header optional).
    """
    df = _read_table(path, positional=["sku"])
    if df.empty:
        logger.info("Loaded 0 SKUs from {}", path)
        return []

    col: Optional[str] = "sku" if "sku" in df.columns else None
    if col is None:
        col = str(df.columns[0])
        logger.warning("No SKU column recognised in {}; using first column {!r}", path, col)

    skus = [
        _parse_non_negative_int(value, "sku", int(line), Path(path))
        for value, line in zip(df[col], df["_line"])
    ]
    logger.info("Loaded {} SKUs from {}", len(skus), path)
    return skus
