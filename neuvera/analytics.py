from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import pandas as pd

COLUMNS = ["pixelId", "sessionId", "eventType", "currentUrl", "referrerUrl", "hashedUserId", "timestamp"]


def load_events(parquet_dir: Path) -> pd.DataFrame:
    files = sorted(Path(parquet_dir).glob("events_*.parquet"))
    if not files:
        return pd.DataFrame(columns=COLUMNS)
    df = pd.concat([pd.read_parquet(f) for f in files], ignore_index=True)
    # normalize columns that may be missing
    for col in COLUMNS:
        if col not in df.columns:
            df[col] = None
    df["timestamp"] = pd.to_numeric(df["timestamp"], errors="coerce")
    return df


def _path(url: Any) -> Optional[str]:
    if not isinstance(url, str) or not url:
        return None
    try:
        return urlparse(url).path or "/"
    except ValueError:
        return None


def suppress_small_cells(counts: pd.Series, k: int) -> pd.Series:
    return counts[counts >= k]


def summarize(df: pd.DataFrame, start: Optional[float] = None, end: Optional[float] = None,
              k: int = 1) -> Dict[str, Any]:
    """Aggregate counts only; no per-user rows leave this function."""
    df = _window(df, start, end)

    type_counts = df["eventType"].value_counts()

    views = df[df["eventType"] == "page_view"]
    paths = views["currentUrl"].map(_path).dropna()
    page_counts = suppress_small_cells(paths.value_counts(), k)
    popular = page_counts.sort_values(ascending=False, kind="mergesort").head(10)

    sessions = df["sessionId"].dropna().nunique()
    chats = int((df["eventType"] == "chat_interaction").sum())

    return {
        "totalEvents": int(len(df)),
        "eventTypes": {str(t): int(n) for t, n in type_counts.items()},
        "popularPages": [[str(p), int(n)] for p, n in popular.items()],
        "userEngagement": {
            "uniqueSessions": int(sessions),
            "chatInteractions": chats,
            "avgInteractionsPerSession": (chats / sessions) if sessions else 0.0,
        },
        "timeRange": {"start": start, "end": end},
    }


def _window(df: pd.DataFrame, start: Optional[float], end: Optional[float]) -> pd.DataFrame:
    if start is not None:
        df = df[df["timestamp"] >= start]
    if end is not None:
        df = df[df["timestamp"] <= end]
    return df


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    df = df.astype(object).where(pd.notna(df), None)
    rows = df.to_dict(orient="records")
    for row in rows:
        if isinstance(row.get("metadata"), str):
            try:
                row["metadata"] = json.loads(row["metadata"])
            except ValueError:
                pass
    return rows


def recent_events(df: pd.DataFrame, start: Optional[float] = None, end: Optional[float] = None,
                  limit: int = 50) -> List[Dict[str, Any]]:
    df = _window(df, start, end)
    return _records(df.sort_values("timestamp", ascending=False, kind="mergesort").head(limit))


def page_views(df: pd.DataFrame, start: Optional[float] = None, end: Optional[float] = None,
               limit: int = 50) -> List[Dict[str, Any]]:
    df = _window(df, start, end)
    views = df[df["eventType"] == "page_view"]
    cols = [c for c in ("pixelId", "sessionId", "currentUrl", "referrerUrl", "timestamp") if c in views]
    views = views.sort_values("timestamp", ascending=False, kind="mergesort").head(limit)[cols]
    return _records(views.rename(columns={"currentUrl": "url", "referrerUrl": "referrer"}))


def sessions(df: pd.DataFrame, start: Optional[float] = None, end: Optional[float] = None,
             limit: int = 50) -> List[Dict[str, Any]]:
    """One row per session; a session is in range when it started in range."""
    df = df.dropna(subset=["sessionId", "timestamp"])
    if df.empty:
        return []
    grouped = df.groupby("sessionId").agg(
        startTime=("timestamp", "min"),
        endTime=("timestamp", "max"),
        pageViews=("eventType", lambda s: int((s == "page_view").sum())),
        interactions=("eventType", lambda s: int((s != "page_view").sum())),
    ).reset_index()
    grouped = grouped.rename(columns={"sessionId": "id"})
    if start is not None:
        grouped = grouped[grouped["startTime"] >= start]
    if end is not None:
        grouped = grouped[grouped["startTime"] <= end]
    grouped["duration"] = (grouped["endTime"] - grouped["startTime"]).astype(int)
    grouped = grouped.sort_values("startTime", ascending=False, kind="mergesort").head(limit)
    return [
        {
            "id": str(row.id),
            "startTime": float(row.startTime),
            "endTime": float(row.endTime),
            "pageViews": int(row.pageViews),
            "interactions": int(row.interactions),
            "duration": int(row.duration),
        }
        for row in grouped.itertuples(index=False)
    ]
