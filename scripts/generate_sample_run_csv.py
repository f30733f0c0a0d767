from __future__ import annotations

import argparse
import csv
import math
import random
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Final

from zoneinfo import ZoneInfo


TZ: Final[str] = "Asia/Shanghai"
M_PER_DEG_LAT: Final[float] = 111_195.0


@dataclass(frozen=True, slots=True)
class Leg:
    """A stretch of the run: move at speed_mps for seconds (0 speed = standing still)."""

    seconds: int
    speed_mps: float
    heading_deg: float


def generate_samples(
    *,
    seed: int,
    start_local: datetime,
    start_lat: float,
    start_lon: float,
    legs: list[Leg],
) -> list[dict[str, str]]:
    """Generate fake run rows with jitter, stops, dropouts and the odd broken fix."""

    rng = random.Random(seed)
    cur_ms = int(start_local.replace(tzinfo=ZoneInfo(TZ)).timestamp() * 1000)
    lat, lon = start_lat, start_lon

    out: list[dict[str, str]] = []
    for leg in legs:
        t = 0
        while t < leg.seconds:
            # Irregular sampling: mostly ~1s, sometimes a few seconds of dropout
            step = rng.choice([1, 1, 1, 1, 2]) if rng.random() > 0.02 else rng.randint(5, 15)
            t += step
            cur_ms += step * 1000 + rng.randint(-150, 150)

            dist = leg.speed_mps * step
            h = math.radians(leg.heading_deg + rng.uniform(-8, 8))
            lat += dist * math.cos(h) / M_PER_DEG_LAT
            lon += dist * math.sin(h) / (M_PER_DEG_LAT * math.cos(math.radians(lat)))

            # GPS jitter of a few meters around the true position
            jlat = lat + rng.gauss(0, 1.5) / M_PER_DEG_LAT
            jlon = lon + rng.gauss(0, 1.5) / (M_PER_DEG_LAT * math.cos(math.radians(lat)))
            speed = leg.speed_mps + rng.gauss(0, 0.25)
            if rng.random() < 0.01:
                speed = -1.0
            hacc = rng.choice([4.0, 5.0, 8.0, 12.0, 20.0, 40.0])

            lat_s, lon_s = f"{jlat:.7f}", f"{jlon:.7f}"
            if rng.random() < 0.003:
                lat_s = "nan"

            out.append(
                {
                    "geoTime": str(cur_ms),
                    "latitude": lat_s,
                    "longitude": lon_s,
                    "altitude": f"{rng.uniform(0, 30):.1f}",
                    "horizontalAccuracy": f"{hacc:.1f}",
                    "speed": f"{speed:.2f}",
                }
            )
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Generate a fake run CSV for demo/testing (privacy-safe).")
    p.add_argument("--out", type=str, default="sample_data/run.csv", help="Output CSV path")
    p.add_argument("--seed", type=int, default=42, help="Random seed (reproducible)")
    p.add_argument(
        "--start",
        type=str,
        default="2025-01-01 07:00:00",
        help="Start local time in Asia/Shanghai, e.g. '2025-01-01 07:00:00'",
    )
    args = p.parse_args()

    legs = [
        Leg(seconds=600, speed_mps=2.8, heading_deg=0.0),
        Leg(seconds=60, speed_mps=0.0, heading_deg=0.0),  # traffic light
        Leg(seconds=900, speed_mps=3.1, heading_deg=90.0),
        Leg(seconds=20, speed_mps=0.7, heading_deg=180.0),  # slow walk, should not pause
        Leg(seconds=600, speed_mps=2.9, heading_deg=200.0),
        Leg(seconds=120, speed_mps=0.0, heading_deg=0.0),
    ]
    rows = generate_samples(
        seed=args.seed,
        start_local=datetime.fromisoformat(args.start),
        start_lat=31.2304000,
        start_lon=121.4737000,
        legs=legs,
    )
    out_path = Path(args.out)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    fieldnames = ["geoTime", "latitude", "longitude", "altitude", "horizontalAccuracy", "speed"]
    with out_path.open("w", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        w.writeheader()
        w.writerows(rows)

    print(f"Generated: {out_path} (rows={len(rows)}, seed={args.seed})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
