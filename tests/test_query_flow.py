"""End-to-end tests for the question-to-result flow."""

import pytest

from sqlmate.errors import ExecutionError, SafetyViolation
from sqlmate.ingest import UploadItem, commit_dataset, commit_dataset_group, preview_upload
from sqlmate.query_flow import QueryState, answer_question, execute_sql

SALES_CSV = "name,email,amount\n" + "".join(
    f"User {i},user{i}@example.com,{i * 10}\n" for i in range(10)
)


@pytest.fixture
def sales(storage, parse_csv):
    parsed = parse_csv(SALES_CSV, "Sales.csv")
    report = preview_upload(parsed).pii_report
    return commit_dataset(storage, parsed, report, {"email": "drop"}, dataset_id="abcd1234-ef56")


def test_upload_flags_only_email(parse_csv):
    report = preview_upload(parse_csv(SALES_CSV, "Sales.csv")).pii_report
    assert report.column_names == ["email"]
    assert report.columns[0].confidence == "high"
    assert report.columns[0].suggested_action == "drop"


def test_question_to_rows(storage, sales, make_generator):
    generator = make_generator(["SELECT * FROM Sales LIMIT 500"])
    outcome = answer_question("Show everything", "schema", [sales], storage, generator)

    assert outcome.ok
    assert outcome.sql == 'SELECT * FROM "dataset_sales_abcd1234" LIMIT 200'
    assert len(outcome.rows) == 10
    assert "email" not in outcome.columns
    assert outcome.rows[0]["name"] == "User 0"
    assert outcome.history == [
        QueryState.QUESTION_RECEIVED,
        QueryState.SQL_GENERATED,
        QueryState.SQL_VALIDATED,
        QueryState.SQL_REWRITTEN,
        QueryState.EXECUTED,
        QueryState.RETURNED,
    ]


def test_execution_failure_is_retried_with_error(storage, sales, make_generator):
    generator = make_generator(["SELECT missing_col FROM Sales", "SELECT name FROM Sales"])
    outcome = answer_question("List names", "schema", [sales], storage, generator)

    assert outcome.ok
    assert len(generator.calls) == 2
    assert generator.calls[0]["question"] == "List names"
    assert "no such column" in generator.calls[1]["question"]
    assert QueryState.RETRY_GENERATED in outcome.history
    assert [row["name"] for row in outcome.rows][:2] == ["User 0", "User 1"]


def test_second_failure_ends_the_flow(storage, sales, make_generator):
    generator = make_generator(["SELECT missing_col FROM Sales", "SELECT other_col FROM Sales"])
    outcome = answer_question("List names", "schema", [sales], storage, generator)

    assert outcome.state == QueryState.FAILED
    assert not outcome.ok
    assert len(generator.calls) == 2
    assert outcome.sql == 'SELECT other_col FROM "dataset_sales_abcd1234" LIMIT 200'
    assert "other_col" in outcome.error
    assert outcome.rows is None


def test_unsafe_sql_is_rejected_without_retry(storage, sales, make_generator):
    generator = make_generator(["DELETE FROM Sales"])
    outcome = answer_question("Remove everything", "schema", [sales], storage, generator)

    assert outcome.state == QueryState.REJECTED
    assert '"DELETE"' in outcome.error
    assert len(generator.calls) == 1
    assert storage.execute(f'SELECT COUNT(*) AS n FROM "{sales.storage_table_name}"') == [{"n": 10}]


def test_multi_statement_rejection_carries_suggestion(storage, sales, make_generator):
    generator = make_generator(["SELECT name FROM Sales; SELECT amount FROM Sales"])
    outcome = answer_question("Names and amounts", "schema", [sales], storage, generator)

    assert outcome.state == QueryState.REJECTED
    assert outcome.suggestion == "SELECT name FROM Sales"


def test_join_across_a_group(storage, parse_csv, make_generator):
    orders = parse_csv("order_id,seller_id,amount\n1,10,500\n2,20,700\n", "Orders.csv")
    sellers = parse_csv("id,seller\n10,Acme\n20,Globex\n", "Sellers.csv")
    group = commit_dataset_group(
        storage,
        [
            UploadItem(parsed=orders, pii_report=preview_upload(orders).pii_report),
            UploadItem(parsed=sellers, pii_report=preview_upload(sellers).pii_report),
        ],
    )
    datasets = storage.get_group_datasets(group.id)
    assert group.name == "Group_Orders_Sellers"

    generator = make_generator(
        ["SELECT o.order_id, s.seller FROM Orders o JOIN Sellers s ON o.seller_id = s.id ORDER BY o.order_id"]
    )
    outcome = answer_question("Who sold each order?", "schema", datasets, storage, generator)

    assert outcome.ok, outcome.error
    assert outcome.rows == [{"order_id": "1", "seller": "Acme"}, {"order_id": "2", "seller": "Globex"}]
    for dataset in datasets:
        assert f'"{dataset.storage_table_name}"' in outcome.sql


class TestExecuteSQL:
    def test_runs_user_sql(self, storage, sales):
        result = execute_sql(storage, "SELECT name FROM Sales WHERE CAST(amount AS INTEGER) >= 80", [sales])
        assert [row["name"] for row in result["rows"]] == ["User 8", "User 9"]
        assert result["sql"].endswith("LIMIT 200")

    def test_rows_are_capped(self, storage, parse_csv):
        big = parse_csv("n\n" + "".join(f"{i}\n" for i in range(250)), "Numbers.csv")
        dataset = commit_dataset(storage, big, preview_upload(big).pii_report)
        result = execute_sql(storage, "SELECT * FROM Numbers", [dataset])
        assert len(result["rows"]) == 200

    def test_unsafe_sql_raises(self, storage, sales):
        with pytest.raises(SafetyViolation):
            execute_sql(storage, "DROP TABLE Sales", [sales])

    def test_failure_reports_rewritten_sql(self, storage, sales):
        with pytest.raises(ExecutionError) as excinfo:
            execute_sql(storage, "SELECT nope FROM Sales", [sales])
        assert excinfo.value.sql == 'SELECT nope FROM "dataset_sales_abcd1234" LIMIT 200'
