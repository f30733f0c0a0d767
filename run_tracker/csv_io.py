"""CSV input utilities for recorded position samples."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

from run_tracker.models import PositionSample

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("geoTime", "latitude", "longitude")


@dataclass(frozen=True, slots=True)
class CsvSummary:
    """Quick summary of CSV parsing."""

    rows_total: int
    rows_parsed: int
    rows_skipped: int
    fieldnames: Sequence[str]


def _parse_int(value: str) -> int:
    return int(value.strip())


def _parse_float(value: str) -> float:
    return float(value.strip())


def _sample_from_row(row: dict[str, str]) -> PositionSample:
    # nan/inf parse fine here on purpose: the engine reports them as data-quality events
    return PositionSample(
        timestamp_ms=_parse_int(row["geoTime"]),
        latitude=_parse_float(row["latitude"]),
        longitude=_parse_float(row["longitude"]),
        accuracy_m=_parse_float(row.get("horizontalAccuracy", "-1") or "-1"),
        speed_mps=_parse_float(row.get("speed", "0") or "0"),
    )


def _check_fields(fieldnames: Sequence[str] | None) -> None:
    missing = [name for name in REQUIRED_FIELDS if name not in (fieldnames or ())]
    if missing:
        raise KeyError(f"CSV缺少必要字段：{missing}. 实际字段：{list(fieldnames or ())}")


def iter_samples(csv_path: str | Path) -> Iterator[PositionSample]:
    """Yield PositionSample objects from a recorded track CSV.

    Columns used: geoTime (epoch ms), latitude, longitude, speed, horizontalAccuracy.
    Other columns are ignored; rows that fail to parse are skipped.

    Raises:
        KeyError: If a required column is missing.
    """

    p = Path(csv_path)
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            return
        _check_fields(reader.fieldnames)
        for row in reader:
            try:
                yield _sample_from_row(row)
            except (ValueError, TypeError, AttributeError):
                # 某些行可能损坏/空行，直接跳过
                continue


def load_samples(csv_path: str | Path) -> tuple[list[PositionSample], CsvSummary]:
    """Load all samples into memory, in file order.

    Returns:
        (samples, summary)

    Raises:
        KeyError: If a required column is missing.
    """

    p = Path(csv_path)
    rows_total = 0
    parsed: list[PositionSample] = []
    fieldnames: Sequence[str] = ()

    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = reader.fieldnames or ()
        if fieldnames:
            _check_fields(fieldnames)
        for row in reader:
            rows_total += 1
            try:
                parsed.append(_sample_from_row(row))
            except (ValueError, TypeError, AttributeError):
                continue

    summary = CsvSummary(
        rows_total=rows_total,
        rows_parsed=len(parsed),
        rows_skipped=rows_total - len(parsed),
        fieldnames=fieldnames,
    )
    if summary.rows_skipped > 0:
        logger.warning("CSV中有 %s 行解析失败已跳过", summary.rows_skipped)
    return parsed, summary
