from __future__ import annotations

from pathlib import Path

import streamlit as st

from run_tracker.csv_io import load_samples
from run_tracker.drivers import replay
from run_tracker.engine import TrackingParams
from run_tracker.models import DEFAULT_TZ, DataQualityEvent, PositionSample, RunStatus
from run_tracker.quality import describe_quality, quality_from_accuracy
from run_tracker.summary import format_clock, format_local_time, linear_calories, summarize


@st.cache_data(show_spinner=False)
def _load(path_csv: str, mtime: float) -> tuple[list[PositionSample], int]:
    _ = mtime  # part of cache key so updated files reload automatically
    samples, summary = load_samples(path_csv)
    return samples, summary.rows_skipped


def main() -> None:
    st.set_page_config(page_title="跑步轨迹回放：距离/时长/自动暂停", layout="wide")
    st.title("跑步轨迹回放：距离、运动时长与自动暂停")

    with st.sidebar:
        st.subheader("数据与时区")
        tz_name = st.text_input("时区（IANA）", value=DEFAULT_TZ)
        path_csv = st.text_input("轨迹 CSV 路径", value="run.csv")
        kcal_per_km = st.number_input("每公里卡路里（线性估算）", value=60.0, step=5.0)

        defaults = TrackingParams()
        with st.expander("高级参数（通常不用改）", expanded=False):
            min_distance_m = st.number_input("min_distance_m（抖动过滤，米）", value=defaults.min_distance_m, step=1.0)
            pause_threshold = st.number_input(
                "pause_threshold_mps（低于则计为静止）", value=defaults.pause_threshold_mps, step=0.1
            )
            resume_threshold = st.number_input(
                "resume_threshold_mps（高于则恢复）", value=defaults.resume_threshold_mps, step=0.1
            )
            pause_debounce = st.number_input(
                "pause_debounce_samples（连续低速样本数）",
                value=defaults.pause_debounce_samples,
                min_value=1,
                step=1,
            )

        run_clicked = st.button("回放轨迹", type="primary", use_container_width=True)

    p = Path(path_csv)
    if not p.exists():
        st.error(f"找不到文件：{path_csv!r}。可以用 scripts/generate_sample_run_csv.py 生成示例数据。")
        return
    if not run_clicked:
        st.info("在左侧确认参数后点击“回放轨迹”。")
        return

    try:
        params = TrackingParams(
            min_distance_m=float(min_distance_m),
            pause_threshold_mps=float(pause_threshold),
            resume_threshold_mps=float(resume_threshold),
            pause_debounce_samples=int(pause_debounce),
        )
        samples, rows_skipped = _load(path_csv, p.stat().st_mtime)
    except (ValueError, KeyError) as exc:
        st.exception(exc)
        return

    rejected: list[DataQualityEvent] = []
    transitions: list[dict[str, object]] = []
    cursor: dict[str, int | None] = {"ts": None}

    def _tracked():
        for s in samples:
            cursor["ts"] = s.timestamp_ms
            yield s

    def _on_status(old: RunStatus, new: RunStatus) -> None:
        ts = cursor["ts"]
        transitions.append(
            {
                "time": format_local_time(ts, tz_name) if ts is not None else "",
                "from": old.value,
                "to": new.value,
            }
        )

    try:
        with st.spinner("正在回放轨迹 ..."):
            snapshot = replay(_tracked(), params, on_data_quality=rejected.append, on_status_change=_on_status)
    except ValueError as exc:  # unknown time zone
        st.exception(exc)
        return
    summary = summarize(snapshot, calories=linear_calories(float(kcal_per_km)))

    st.subheader("汇总")
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("距离", f"{summary.distance_km:.2f} km")
    c2.metric("运动时长", format_clock(summary.seconds_elapsed))
    c3.metric("配速", summary.pace_text)
    c4.metric("卡路里", f"{summary.calories_kcal or 0.0:.0f} kcal")

    c5, c6, c7, c8, c9 = st.columns(5)
    c5.metric("自动暂停次数", str(summary.auto_pauses))
    c6.metric("路线点数", str(summary.route_points))
    c7.metric("被接受的样本", str(summary.samples_accepted))
    c8.metric("被拒绝的样本", str(len(rejected)))
    c9.metric("解析失败的行", str(rows_skipped))

    if snapshot.current_position is not None:
        quality = quality_from_accuracy(snapshot.current_position.accuracy_m)
        st.caption(f"最后一个定位点的信号：{describe_quality(quality)}")

    st.subheader("状态切换")
    st.dataframe(transitions, use_container_width=True, height=240)

    with st.expander("路线点（已通过抖动过滤）", expanded=False):
        rows = [{"seq": i, "latitude": pt.latitude, "longitude": pt.longitude} for i, pt in enumerate(snapshot.route)]
        st.dataframe(rows, use_container_width=True, height=360)

    if rejected:
        with st.expander("数据质量问题", expanded=False):
            st.dataframe(
                [
                    {
                        "time": format_local_time(e.sample.timestamp_ms, tz_name),
                        "reason": e.reason.value,
                        "detail": e.detail,
                    }
                    for e in rejected
                ],
                use_container_width=True,
            )

    st.caption(
        "说明：时长只在非自动暂停状态下累计；距离只累加相邻“已接受点”之间的球面距离（小于阈值的抖动不计入）。"
    )


if __name__ == "__main__":
    main()
