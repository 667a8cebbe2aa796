import pandas as pd

from sqlmate.pii_detect import PIIColumn, PIIReport
from sqlmate.viz_utils import build_chart, coerce_numeric_columns, pick_chart, pii_report_frame


def test_numeric_text_is_converted():
    df = coerce_numeric_columns(pd.DataFrame({"amount": ["10", "", "2.5"], "name": ["a", "b", "c"]}))
    assert pd.api.types.is_numeric_dtype(df["amount"])
    assert not pd.api.types.is_numeric_dtype(df["name"])


class TestPickChart:
    def test_bar_over_labels(self):
        frame = coerce_numeric_columns(pd.DataFrame({"region": ["north", "south"], "total": ["5", "7"]}))
        assert pick_chart(frame) == {"kind": "bar", "x": "region", "y": "total"}

    def test_line_over_dates(self):
        frame = pd.DataFrame({"day": pd.to_datetime(["2024-01-01", "2024-01-02"]), "total": [1, 2]})
        assert pick_chart(frame) == {"kind": "line", "x": "day", "y": ["total"]}

    def test_histogram_for_numbers_only(self):
        assert pick_chart(pd.DataFrame({"total": [1, 2, 3]}))["kind"] == "histogram"

    def test_nothing_numeric(self):
        assert pick_chart(pd.DataFrame({"name": ["a"]})) is None


def test_build_chart_handles_empty_and_text_rows():
    assert build_chart(pd.DataFrame()) is None
    assert build_chart(pd.DataFrame({"name": ["Acme", "Globex"]})) is None
    assert build_chart(pd.DataFrame({"seller": ["Acme", "Globex"], "amount": ["500", "700"]})) is not None


def test_pii_report_frame():
    report = PIIReport(columns=[PIIColumn(name="email", reason="r", confidence="high", suggested_action="drop")])
    frame = pii_report_frame(report)
    assert frame.loc[0, "column"] == "email"
    assert frame.loc[0, "suggested action"] == "drop"
