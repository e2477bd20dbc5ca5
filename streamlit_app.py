"""
Shift OEE Tracker — Dashboard
=============================
Live view of the current shift (OEE, hourly output, plan vs actual) plus
forms for quality data, plans, and corrections, and a period export.

Reads and writes through the store chosen in db.py (Supabase when
SUPABASE_URL / SUPABASE_KEY are set, otherwise in-memory).

Usage:
  streamlit run streamlit_app.py
"""

import os
import shutil
import tempfile
from datetime import date

import altair as alt
import pandas as pd
import streamlit as st

from db import get_store, is_connected
from errors import OEETrackerError
from oee import (
    latest_oee,
    oee_history,
    rejections_from_frame,
    stop_times_from_frame,
    submit_quality_data,
)
from production import (
    hourly_production_data,
    part_split,
    production_status,
    recent_plan_actual,
    set_plan,
)
from reports import export_period, monthly_runtime, monthly_stats, record_correction
from shared import PART_NUMBERS, SHIFT_1, SHIFT_2, SHIFTS, part_name
from shift_clock import shift_hours

st.set_page_config(
    page_title="Shift OEE Tracker",
    page_icon="📊",
    layout="wide",
)

store = get_store()

st.title("Shift OEE Tracker")
if not is_connected():
    st.caption("No database configured — running on an in-memory store.")

tab_live, tab_quality, tab_month, tab_export = st.tabs(
    ["Live Shift", "Quality Data", "This Month", "Export"]
)

# =====================================================================
# TAB 1: LIVE SHIFT
# =====================================================================
with tab_live:
    status = production_status(store)
    c1, c2, c3 = st.columns(3)
    c1.metric("Line", status["status"].upper())
    c2.metric("Shift Active", "Yes" if status["is_shift_active"] else "No")
    c3.metric("Last Report", status["last_activity"] or "—")

    current = latest_oee(store)
    st.subheader("OEE")
    if current is None:
        st.info("No OEE yet. Submit quality data for a shift on the Quality Data tab.")
    else:
        o1, o2, o3, o4 = st.columns(4)
        o1.metric("OEE", current["oee"])
        o2.metric("Availability", current["availability"])
        o3.metric("Performance", current["performance"])
        o4.metric("Quality", current["quality"])
        st.caption(
            f"{current['shift']} on {current['date']} | total {current['total_count']} | "
            f"good {current['good_count']} | run time {current['run_time']} min"
        )

    hourly = hourly_production_data(store)
    st.subheader("Hourly Production")
    if hourly is None:
        st.info("No production recorded yet.")
    else:
        rows = [
            {"Part": part, "Hour": hour, "Count": count}
            for part, hours in hourly["hourly_production"].items()
            for hour, count in hours.items()
        ]
        if rows:
            chart_df = pd.DataFrame(rows)
            seen = set(chart_df["Hour"])
            hour_order = [h for h in shift_hours(SHIFT_1) + shift_hours(SHIFT_2) if h in seen]
            bars = alt.Chart(chart_df).mark_bar().encode(
                x=alt.X("Hour:N", sort=hour_order, title="Hour"),
                y=alt.Y("Count:Q", title="Units"),
                color=alt.Color("Part:N"),
                xOffset="Part:N",
                tooltip=["Part", "Hour", "Count"],
            )
            st.altair_chart(bars, use_container_width=True)
        st.caption(f"Shift date {hourly['date']}")

    split = part_split(store)
    if split:
        st.subheader("Part Split (latest shift)")
        st.dataframe(
            pd.DataFrame([{"Part": k, "Count": v} for k, v in split.items()]),
            use_container_width=True, hide_index=True,
        )

    st.subheader("Plan vs Actual")
    pa = recent_plan_actual(store)
    if pa:
        pa_df = pd.DataFrame(pa)
        pa_df["part"] = pa_df["part_number"].map(part_name)
        st.dataframe(pa_df[["date", "shift", "part", "plan", "actual"]],
                     use_container_width=True, hide_index=True)
    else:
        st.info("No plan/actual records yet.")

    history = oee_history(store)
    if history:
        st.subheader("OEE History")
        hist_df = pd.DataFrame(history)
        hist_df["oee"] = hist_df["oee"].astype(float)
        line = alt.Chart(hist_df).mark_line(
            point=alt.OverlayMarkDef(size=60), color="#1B2A4A"
        ).encode(
            x=alt.X("date:T", title="Date"),
            y=alt.Y("oee:Q", title="OEE %"),
            color=alt.Color("shift:N"),
            tooltip=["date", "shift", alt.Tooltip("oee:Q", format=".2f")],
        )
        st.altair_chart(line, use_container_width=True)

# =====================================================================
# TAB 2: QUALITY DATA / PLAN / CORRECTIONS
# =====================================================================
with tab_quality:
    st.subheader("Stoppages and Rejections")
    with st.form("quality"):
        q1, q2 = st.columns(2)
        q_shift = q1.selectbox("Shift", SHIFTS)
        q_date = q2.date_input("Shift date", value=date.today())

        st.markdown("Stoppages (minutes)")
        stops_df = st.data_editor(
            pd.DataFrame([{"duration": 0, "reason": ""}]),
            num_rows="dynamic", key="stops",
        )
        st.markdown("Rejections (optional)")
        rej_df = st.data_editor(
            pd.DataFrame([{"partNumber": PART_NUMBERS["BIG_CYLINDER"], "count": 0, "reason": ""}]),
            num_rows="dynamic", key="rejections",
        )
        submitted = st.form_submit_button("Submit and calculate OEE", type="primary")

    if submitted:
        payload = {
            "shift": q_shift,
            "date": q_date.isoformat(),
            "stopTimes": stop_times_from_frame(stops_df),
        }
        rejections = rejections_from_frame(rej_df)
        if rejections:
            payload["rejections"] = rejections
        try:
            result = submit_quality_data(store, payload)
            st.success(f"OEE for {q_shift} on {q_date}: {result['oee']['oee'] * 100:.2f}%")
        except OEETrackerError as e:
            st.error(f"{e.kind}: {e.detail}")

    st.subheader("Set Plan")
    with st.form("plan"):
        p1, p2, p3, p4 = st.columns(4)
        p_part = p1.selectbox("Part", list(PART_NUMBERS.values()), format_func=part_name)
        p_shift = p2.selectbox("Shift", SHIFTS, key="plan_shift")
        p_date = p3.date_input("Date", value=date.today(), key="plan_date")
        p_plan = p4.number_input("Plan", min_value=0, step=10)
        if st.form_submit_button("Save plan"):
            try:
                set_plan(store, {"partNumber": p_part, "shift": p_shift,
                                 "date": p_date.isoformat(), "plan": int(p_plan)})
                st.success("Plan saved")
            except OEETrackerError as e:
                st.error(f"{e.kind}: {e.detail}")

    st.subheader("Correction")
    with st.form("correction"):
        c_date = st.date_input("Date", value=date.today(), key="corr_date")
        c_problem = st.text_area("Problem")
        c_action = st.text_area("Corrective action")
        if st.form_submit_button("Save correction"):
            try:
                record_correction(store, {"problem": c_problem, "date": c_date.isoformat(),
                                          "correctiveAction": c_action})
                st.success("Correction saved")
            except OEETrackerError as e:
                st.error(f"{e.kind}: {e.detail}")

# =====================================================================
# TAB 3: THIS MONTH
# =====================================================================
with tab_month:
    stats = monthly_stats(store)
    runtime = monthly_runtime(store)
    st.caption(f"{stats['period']['start']} to {stats['period']['end']}")

    st.subheader("Production by Part")
    st.dataframe(
        pd.DataFrame([
            {"Part": name, "Produced": s["total_production"], "Good": s["good_count"],
             "Rejected": s["total_rejections"]}
            for name, s in stats["stats"].items()
        ]),
        use_container_width=True, hide_index=True,
    )

    rs = runtime["stats"]
    r1, r2, r3, r4 = st.columns(4)
    r1.metric("Planned (min)", f"{rs['total_planned_time']:,.0f}")
    r2.metric("Run Time (min)", f"{rs['actual_run_time']:,.0f}")
    r3.metric("Stopped (min)", f"{rs['total_stop_time']:,.0f}")
    r4.metric("Utilization", rs["utilization_rate"])

    if rs["stoppages_by_reason"]:
        st.subheader("Stoppages by Reason")
        st.dataframe(pd.DataFrame(rs["stoppages_by_reason"]),
                     use_container_width=True, hide_index=True)

# =====================================================================
# TAB 4: EXPORT
# =====================================================================
with tab_export:
    e1, e2 = st.columns(2)
    start = e1.date_input("From", value=date.today().replace(day=1), key="exp_start")
    end = e2.date_input("To", value=date.today(), key="exp_end")

    if st.button("Build workbook", type="primary", use_container_width=True):
        tmp_dir = tempfile.mkdtemp()
        output_name = f"oee_report_{start.isoformat()}_{end.isoformat()}.xlsx"
        output_path = os.path.join(tmp_dir, output_name)
        try:
            export_period(store, start.isoformat(), end.isoformat(), output_path)
            with open(output_path, "rb") as f:
                output_bytes = f.read()
            st.download_button(
                label=f"Download {output_name}",
                data=output_bytes,
                file_name=output_name,
                mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            )
        except OEETrackerError as e:
            st.error(f"{e.kind}: {e.detail}")
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
