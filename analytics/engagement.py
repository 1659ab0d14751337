"""
Engagement summaries over tracked page visits.

Open sessions (no duration yet, or never closed because the tab died
before the open call returned) are counted as incomplete. They are left
out of the time aggregates rather than counted as zero seconds.
"""

from __future__ import annotations

import sqlite3

import pandas as pd

from core.constants import ACTIVITY_TABLE

_GROUP_COLUMNS = ("page_name", "user_id")

SUMMARY_COLUMNS = [
    "visits",
    "completed",
    "incomplete",
    "total_seconds",
    "mean_seconds",
    "median_seconds",
]


def page_time_summary(conn: sqlite3.Connection, by: str = "page_name") -> pd.DataFrame:
    """Per-page (or per-user) visit counts and foreground time, busiest first."""
    assert by in _GROUP_COLUMNS, f"by must be one of {_GROUP_COLUMNS}, got {by!r}"
    df = pd.read_sql_query(
        f"SELECT {by} AS key, duration_seconds FROM {ACTIVITY_TABLE}", conn
    )
    if df.empty:
        return pd.DataFrame(columns=[by, *SUMMARY_COLUMNS])

    df["duration_seconds"] = pd.to_numeric(df["duration_seconds"], errors="coerce")
    df["completed"] = df["duration_seconds"].notna()
    grouped = df.groupby("key")

    out = pd.DataFrame({
        "visits": grouped.size(),
        "completed": grouped["completed"].sum().astype(int),
        "total_seconds": grouped["duration_seconds"].sum().astype(int),
        "mean_seconds": grouped["duration_seconds"].mean(),
        "median_seconds": grouped["duration_seconds"].median(),
    })
    out["incomplete"] = out["visits"] - out["completed"]
    out = out.reset_index().rename(columns={"key": by})
    out = out.sort_values(["total_seconds", by], ascending=[False, True], ignore_index=True)
    return out[[by, *SUMMARY_COLUMNS]]


def summary_records(summary: pd.DataFrame) -> list[dict]:
    """JSON-ready rows: NaN aggregates (no completed visits) become None."""
    records = summary.astype(object).where(summary.notna(), None).to_dict(orient="records")
    for r in records:
        for key in ("visits", "completed", "incomplete", "total_seconds"):
            if r.get(key) is not None:
                r[key] = int(r[key])
        for key in ("mean_seconds", "median_seconds"):
            if r.get(key) is not None:
                r[key] = round(float(r[key]), 2)
    return records
