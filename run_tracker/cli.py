"""Command-line interface for run_tracker.

Run:
    python -m run_tracker inspect --csv run.csv
    python -m run_tracker replay --csv run.csv --out route.csv
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Callable, Iterable, Iterator

from run_tracker.csv_io import load_samples
from run_tracker.drivers import IterablePositionSource, PeriodicClock, replay
from run_tracker.engine import DataQualityListener, RunTracker, StatusListener, TrackingParams
from run_tracker.geo import coordinate_problem
from run_tracker.inspect import inspect_samples
from run_tracker.models import DEFAULT_TZ, DataQualityEvent, PositionSample, RunSnapshot, RunStatus
from run_tracker.summary import format_local_time, linear_calories, summarize, write_route_csv


def _cmd_inspect(args: argparse.Namespace) -> int:
    samples, summary = load_samples(args.csv)
    res = inspect_samples(samples, gap_threshold_s=args.gap_seconds)

    print("### CSV字段")
    print(", ".join(summary.fieldnames))
    print()

    print("### 行数")
    print(f"total_rows={summary.rows_total}, parsed={summary.rows_parsed}, skipped={summary.rows_skipped}")
    print()

    if res.min_time_ms is not None and res.max_time_ms is not None:
        print("### 时间范围（本地时区）")
        start = format_local_time(res.min_time_ms, args.tz)
        end = format_local_time(res.max_time_ms, args.tz)
        print(f"start={start}, end={end}")
        print()

    if res.sampling is not None:
        st = res.sampling
        print("### 采样间隔（秒）")
        print(f"intervals={st.intervals}, median={st.median_s:.3f}, p95={st.p95_s:.3f}, max={st.max_s:.3f}")
        print(f"信号中断(>{args.gap_seconds:g}s)={st.dropouts} 次，共 {st.dropout_s:.1f}s")
        print()

    print("### 经纬度范围（粗略）")
    print(f"lat=[{res.min_lat}, {res.max_lat}], lon=[{res.min_lon}, {res.max_lon}]")
    print()

    print("### 数据质量")
    print(
        f"duplicate_timestamps={res.duplicates_timestamp}, out_of_order={res.out_of_order}, "
        f"malformed_coordinates={res.malformed_coordinates}, negative_speed={res.negative_speed}"
    )
    print("signal_quality: " + ", ".join(f"{k}={v}" for k, v in res.quality_counts.items()))
    print()

    if args.json:
        payload = asdict(res) | {
            "rows_total": summary.rows_total,
            "rows_parsed": summary.rows_parsed,
            "rows_skipped": summary.rows_skipped,
            "fieldnames": list(summary.fieldnames),
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _run_realtime(
    samples: list[PositionSample],
    params: TrackingParams,
    speedup: float,
    feed: Callable[[Iterable[PositionSample]], Iterable[PositionSample]],
    on_data_quality: DataQualityListener,
    on_status_change: StatusListener,
) -> RunSnapshot:
    """Drive the engine with a live clock thread and a paced feed thread."""

    first = next((i for i, s in enumerate(samples) if coordinate_problem(s.latitude, s.longitude) is None), None)
    if first is None:
        return RunTracker(params).snapshot()

    fed = iter(feed(samples[first:]))
    start = next(fed)
    source = IterablePositionSource(fed, speedup=speedup)
    clock = PeriodicClock(interval_s=params.tick_interval_s / speedup)
    tracker = RunTracker(
        params,
        source=source,
        clock=clock,
        on_data_quality=on_data_quality,
        on_status_change=on_status_change,
    )
    tracker.start_run(start)
    try:
        source.wait_exhausted()
    except KeyboardInterrupt:
        print("\n收到中断信号：提前结束本次跑步……", file=sys.stderr, flush=True)
    tracker.end_run()
    return tracker.snapshot()


def _cmd_replay(args: argparse.Namespace) -> int:
    samples, summary = load_samples(args.csv)
    params = TrackingParams(
        min_distance_m=args.min_distance_m,
        pause_threshold_mps=args.pause_threshold,
        resume_threshold_mps=args.resume_threshold,
        pause_debounce_samples=args.pause_debounce,
    )

    rejected: list[DataQualityEvent] = []
    transitions: list[tuple[int | None, RunStatus, RunStatus]] = []
    last_ms: dict[str, int | None] = {"ts": None}

    def _on_sample_quality(event: DataQualityEvent) -> None:
        rejected.append(event)

    def _on_status(old: RunStatus, new: RunStatus) -> None:
        transitions.append((last_ms["ts"], old, new))

    def _tracked(items: Iterable[PositionSample]) -> Iterator[PositionSample]:
        for s in items:
            last_ms["ts"] = s.timestamp_ms
            yield s

    if args.realtime:
        snapshot = _run_realtime(samples, params, args.speedup, _tracked, _on_sample_quality, _on_status)
    else:
        snapshot = replay(
            _tracked(samples),
            params,
            on_data_quality=_on_sample_quality,
            on_status_change=_on_status,
        )

    calories = linear_calories(args.kcal_per_km) if args.kcal_per_km is not None else None
    result = summarize(snapshot, calories=calories)

    print(
        f"样本：parsed={summary.rows_parsed}, skipped_rows={summary.rows_skipped}, "
        f"accepted={result.samples_accepted}, rejected={len(rejected)}"
    )
    print(
        f"距离={result.distance_km:.2f} km（{result.distance_m:.1f} m），"
        f"运动时长={result.seconds_elapsed}s，配速={result.pace_text}，自动暂停={result.auto_pauses} 次"
    )
    if result.calories_kcal is not None:
        print(f"卡路里≈{result.calories_kcal:.1f} kcal")
    if args.show_transitions:
        for ts, old, new in transitions:
            when = format_local_time(ts, args.tz) if ts is not None else "-"
            print(f"  {when}  {old.value} -> {new.value}")

    if args.out:
        write_route_csv(snapshot.route, args.out)
        print(f"已导出：{args.out}（路线点={len(snapshot.route)}）")

    if args.json:
        payload = result.as_record() | {
            "data_quality": [
                {"reason": e.reason.value, "epoch_ms": e.sample.timestamp_ms, "detail": e.detail} for e in rejected
            ],
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser."""

    defaults = TrackingParams()
    p = argparse.ArgumentParser(prog="run_tracker")
    p.add_argument("-v", "--verbose", action="count", default=0, help="日志级别：-v=INFO，-vv=DEBUG")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_ins = sub.add_parser("inspect", help="分析轨迹CSV的时间范围/采样间隔/数据质量")
    p_ins.add_argument("--csv", type=str, default="run.csv", help="输入CSV路径")
    p_ins.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA），默认 Asia/Shanghai")
    p_ins.add_argument("--gap-seconds", type=float, default=10.0, help="采样间隔超过该秒数视为信号中断")
    p_ins.add_argument("--json", action="store_true", help="额外输出JSON（便于后处理）")
    p_ins.set_defaults(func=_cmd_inspect)

    p_rep = sub.add_parser("replay", help="把轨迹CSV回放进跑步追踪引擎，输出距离/时长/配速")
    p_rep.add_argument("--csv", type=str, default="run.csv", help="输入CSV路径")
    p_rep.add_argument("--out", type=str, default=None, help="导出路线点CSV路径（可选）")
    p_rep.add_argument("--tz", type=str, default=DEFAULT_TZ, help="时区（IANA）")
    p_rep.add_argument("--json", action="store_true", help="额外输出JSON汇总")
    p_rep.add_argument("--kcal-per-km", type=float, default=None, help="每公里消耗的卡路里（线性估算，可选）")
    p_rep.add_argument(
        "--min-distance-m",
        type=float,
        default=defaults.min_distance_m,
        help="与上一个已接受点的距离超过该值才计入（过滤GPS抖动）",
    )
    p_rep.add_argument(
        "--pause-threshold",
        type=float,
        default=defaults.pause_threshold_mps,
        help="速度低于该值（m/s）计为静止",
    )
    p_rep.add_argument(
        "--resume-threshold",
        type=float,
        default=defaults.resume_threshold_mps,
        help="自动暂停后速度高于该值（m/s）才恢复",
    )
    p_rep.add_argument(
        "--pause-debounce",
        type=int,
        default=defaults.pause_debounce_samples,
        help="连续多少个低速样本后自动暂停",
    )
    p_rep.add_argument("--show-transitions", action="store_true", help="打印状态切换（暂停/恢复）")
    p_rep.add_argument(
        "--realtime",
        action="store_true",
        help="用真实的时钟线程+位置推送线程驱动引擎（按样本时间间隔节奏回放）",
    )
    p_rep.add_argument("--speedup", type=float, default=10.0, help="--realtime 的加速倍数")
    p_rep.set_defaults(func=_cmd_replay)

    return p


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint."""

    parser = build_parser()
    args = parser.parse_args(argv)
    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return int(args.func(args))
    except (ValueError, KeyError, FileNotFoundError) as exc:
        print(f"错误：{exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
