from typing import Any, Dict, List, Optional

import pandas as pd
import plotly.express as px
import streamlit as st

from sqlmate.pii_detect import PIIReport
from sqlmate.sql_safety import MAX_RESULT_ROWS


def is_text_column(series: pd.Series) -> bool:
    return pd.api.types.is_object_dtype(series) or pd.api.types.is_string_dtype(series)


# Uploaded columns are TEXT, so numeric-looking columns are converted for charts.
def coerce_numeric_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Convert object columns to numbers when every non-empty value parses."""
    for col in df.columns:
        if not is_text_column(df[col]):
            continue
        non_empty = df[col].replace("", pd.NA).dropna()
        if non_empty.empty:
            continue
        parsed = pd.to_numeric(non_empty, errors="coerce")
        if parsed.notna().all():
            df[col] = pd.to_numeric(df[col].replace("", pd.NA), errors="coerce")
    return df


def coerce_datetime_columns(df: pd.DataFrame, min_share: float = 0.8) -> pd.DataFrame:
    """Convert text columns to datetimes when at least min_share of values parse."""
    for col in df.columns:
        if not is_text_column(df[col]):
            continue
        parsed = pd.to_datetime(df[col], errors="coerce", format="mixed")
        if parsed.notna().mean() >= min_share:
            df[col] = parsed
    return df


def pick_chart(df: pd.DataFrame) -> Optional[Dict[str, Any]]:
    """Choose chart kind and axes: line over dates, bar over labels, else histogram."""
    value_cols = df.select_dtypes(include="number").columns.tolist()
    if not value_cols:
        return None
    label_cols = [col for col in df.columns if col not in value_cols]
    date_cols = [col for col in label_cols if pd.api.types.is_datetime64_any_dtype(df[col])]
    if date_cols:
        return {"kind": "line", "x": date_cols[0], "y": value_cols}
    if label_cols:
        return {"kind": "bar", "x": label_cols[0], "y": value_cols if len(value_cols) > 1 else value_cols[0]}
    return {"kind": "histogram", "x": value_cols[0], "y": None}


def build_chart(df: pd.DataFrame):
    """Return a plotly figure for a result frame, or None when nothing is plottable."""
    if df.empty:
        return None
    frame = coerce_datetime_columns(coerce_numeric_columns(df.copy()))
    choice = pick_chart(frame)
    if choice is None:
        return None
    if choice["kind"] == "line":
        return px.line(frame.sort_values(choice["x"]), x=choice["x"], y=choice["y"])
    if choice["kind"] == "bar":
        return px.bar(frame, x=choice["x"], y=choice["y"])
    return px.histogram(frame, x=choice["x"])


def render_results(rows: List[Dict[str, Any]], show_chart: bool = False) -> None:
    """Show query rows as a table, plus a chart when one was asked for."""
    if not rows:
        st.info("The query returned no rows.")
        return
    frame = pd.DataFrame(rows)
    st.dataframe(frame, use_container_width=True)
    if len(rows) >= MAX_RESULT_ROWS:
        st.caption(f"Showing the first {MAX_RESULT_ROWS} rows.")
    if not show_chart:
        return
    figure = build_chart(frame)
    if figure is None:
        st.caption("No numeric columns to chart.")
    else:
        st.plotly_chart(figure, use_container_width=True)


def pii_report_frame(report: PIIReport) -> pd.DataFrame:
    """Tabular view of a PII report for the review step."""
    return pd.DataFrame(
        [
            {
                "column": column.name,
                "confidence": column.confidence,
                "suggested action": column.suggested_action,
                "reason": column.reason,
            }
            for column in report.columns
        ]
    )
