#!/usr/bin/env python3
"""
rpda output helpers - status rows, table display and CSV export

Rows are plain dicts so the same data feeds both the screen table and
the CSV file. pandas handles column selection and CSV escaping.

Usage:
    from rputils import status_rows, display_table, export_csv

    rows = status_rows(groups, identifiers)
    display_table(rows)

    with open('status.csv', 'w') as f:
        export_csv(rows, f)
"""

import sys
from typing import Any, Dict, List, Optional, TextIO

import pandas as pd

from rpcopies import classify_copies
from rpconfig import Identifiers
from rpmodels import BatchResult, ReplicationGroup

STATUS_COLUMNS = ["group", "copy", "role", "image_access", "image_mode"]
OUTCOME_COLUMNS = ["group", "copy", "status", "reason"]


def status_rows(
    groups: List[ReplicationGroup], identifiers: Identifiers
) -> List[Dict[str, Any]]:
    """
    One row per copy, production first and test copies last within each group.

    Groups must already carry their copies (GroupDirectory.load_group).
    """
    rows = []
    for group in groups:
        for copy in classify_copies(group.copies, identifiers):
            rows.append(
                {
                    "group": group.name,
                    "copy": copy.name,
                    "role": copy.role or "UNKNOWN",
                    "image_access": "enabled" if copy.image_access_enabled else "disabled",
                    "image_mode": copy.image_mode or "-",
                }
            )
    return rows


def outcome_rows(result: BatchResult) -> List[Dict[str, Any]]:
    return [o.as_row() for o in result.outcomes]


def to_dataframe(
    data: List[Dict[str, Any]], columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """Rows to DataFrame, keeping only the requested columns that exist"""
    if not data:
        return pd.DataFrame()

    df = pd.DataFrame(data)
    if columns:
        df = df[[col for col in columns if col in df.columns]]
    return df


def display_table(
    data: List[Dict[str, Any]],
    columns: Optional[List[str]] = None,
    output: TextIO = None,
    empty_message: str = "No data to display.",
) -> None:
    """
    Write rows as a left-aligned fixed-width table.

    Args:
        data: Rows to display
        columns: Optional column subset (default: all)
        output: Output stream (default: sys.stdout)
        empty_message: Line written instead of a table when there are no rows
    """
    if output is None:
        output = sys.stdout

    if not data:
        output.write(empty_message + "\n")
        return

    # blank cells (no reason, no image mode) would collapse the column
    df = to_dataframe(data, columns=columns).astype(str).replace("", "-")

    widths = {col: max(len(str(col)), df[col].str.len().max()) for col in df.columns}

    header = " ".join(f"{col:<{widths[col]}}" for col in df.columns)
    output.write(header + "\n")
    output.write("-" * len(header) + "\n")

    for _, row in df.iterrows():
        output.write(" ".join(f"{row[col]:<{widths[col]}}" for col in df.columns))
        output.write("\n")


def export_csv(
    data: List[Dict[str, Any]],
    file_handle: TextIO,
    columns: Optional[List[str]] = None,
) -> None:
    """Write rows as CSV to an open text handle; nothing is written for no rows"""
    if not data:
        return

    to_dataframe(data, columns=columns).to_csv(file_handle, index=False)
