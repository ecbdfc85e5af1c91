"""
Load ticks for replay from CSV (header: timestamp,price,volume).

timestamp may be ISO 8601 or Unix epoch seconds/milliseconds; naive times are
taken as UTC. volume is optional and defaults to 0.
"""

from __future__ import annotations

import csv
from datetime import datetime, timezone
from pathlib import Path

from prpos_core.contracts import PriceTick

REQUIRED_COLUMNS = ("timestamp", "price")
EPOCH_MS_THRESHOLD = 1e11


def _parse_timestamp(raw: str) -> datetime:
    raw = raw.strip()
    try:
        epoch = float(raw)
    except ValueError:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if ts.tzinfo is None:
            return ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc)
    if epoch > EPOCH_MS_THRESHOLD:
        epoch /= 1000
    return datetime.fromtimestamp(epoch, tz=timezone.utc)


def load_ticks_csv(path: str | Path) -> list[PriceTick]:
    """Read ticks from *path*, sorted by timestamp.

    Raises FileNotFoundError if the file is missing and ValueError (with the
    line number) on a missing column or malformed row.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Tick CSV not found: {p}")

    ticks: list[PriceTick] = []
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fields = [name.strip().lower() for name in (reader.fieldnames or [])]
        missing = [col for col in REQUIRED_COLUMNS if col not in fields]
        if missing:
            raise ValueError(f"{p}: missing column(s) {', '.join(missing)}")
        reader.fieldnames = fields
        for lineno, row in enumerate(reader, start=2):
            try:
                volume = (row.get("volume") or "").strip()
                ticks.append(
                    PriceTick(
                        timestamp=_parse_timestamp(row["timestamp"]),
                        price=float(row["price"]),
                        volume=float(volume) if volume else 0.0,
                    )
                )
            except (TypeError, ValueError) as exc:
                raise ValueError(f"{p}:{lineno}: invalid tick row: {exc}") from exc

    ticks.sort(key=lambda t: t.timestamp)
    return ticks
