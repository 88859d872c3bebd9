"""
Tests for AI response parsing and P&L reconciliation.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.pipeline.reconciliation import (
    aggregate_pl_statements,
    build_analysis,
    degraded_analysis,
    extract_json_object,
    normalize_transactions,
    parse_model_response,
    recompute_pl,
    reconcile_pl,
    repair_json,
    scan_currency_amounts,
)

FIXED_TIME = datetime(2025, 4, 1, 12, 0, tzinfo=timezone.utc)


def _response(**overrides) -> dict:
    body = {
        "documentType": "bank_statement",
        "transactions": [
            {"date": "2025-03-01", "description": "Client payment", "amount": 1200,
             "type": "credit", "category": "Sales"},
            {"date": "2025-03-05", "description": "Office rent", "amount": 450.5,
             "type": "debit", "category": "Rent"},
            {"date": "2025-03-09", "description": "Hosting", "amount": 49.5,
             "type": "debit", "category": "Software"},
        ],
        "summary": {"totalDebits": 500, "totalCredits": 1200, "transactionCount": 3},
        "plStatement": {"totalRevenue": 1200, "totalExpenses": 500, "netIncome": 700,
                        "categories": {"Sales": 1200, "Rent": 450.5, "Software": 49.5}},
        "insights": ["Healthy month"],
    }
    body.update(overrides)
    return body


class TestExtractJsonObject:

    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == '{"a": 1}'

    def test_surrounding_prose(self):
        text = 'Here is the analysis:\n{"a": {"b": 2}}\nLet me know if you need more.'
        assert extract_json_object(text) == '{"a": {"b": 2}}'

    def test_braces_inside_strings(self):
        text = '{"note": "uses {curly} braces", "x": 1} trailing }'
        assert extract_json_object(text) == '{"note": "uses {curly} braces", "x": 1}'

    def test_escaped_quote_inside_string(self):
        text = '{"note": "say \\"hi\\" {", "x": 1}'
        assert json.loads(extract_json_object(text)) == {"note": 'say "hi" {', "x": 1}

    def test_first_of_two_objects(self):
        assert extract_json_object('{"a": 1} {"b": 2}') == '{"a": 1}'

    def test_unbalanced_falls_back_to_last_brace(self):
        text = '{"a": {"b": 1}'
        assert extract_json_object(text) == '{"a": {"b": 1}'

    def test_no_object(self):
        assert extract_json_object("no json here") is None
        assert extract_json_object("") is None


class TestRepairJson:

    def test_trailing_commas(self):
        assert json.loads(repair_json('{"a": [1, 2,], "b": 3,}')) == {"a": [1, 2], "b": 3}

    def test_trailing_comma_before_newline(self):
        assert json.loads(repair_json('{"a": 1,\n}')) == {"a": 1}


class TestParseModelResponse:

    def test_clean_json(self):
        parsed = parse_model_response('{"a": 1}')
        assert parsed.data == {"a": 1}
        assert parsed.mode == "json"

    def test_repaired(self):
        parsed = parse_model_response('```json\n{"a": [1,],}\n```')
        assert parsed.data == {"a": [1]}
        assert parsed.mode == "repaired"

    def test_unrepairable(self):
        parsed = parse_model_response("{not: json}")
        assert parsed.data is None
        assert parsed.mode == "failed"
        assert "Invalid JSON" in parsed.error

    def test_no_object(self):
        parsed = parse_model_response("I could not read this document.")
        assert parsed.data is None
        assert parsed.error == "No JSON object found in AI response"


class TestNormalizeTransactions:

    def test_drops_entries_without_amount(self):
        txs = normalize_transactions([
            {"amount": "n/a", "type": "debit"},
            {"description": "no amount"},
            "not a dict",
            {"amount": "$20.00", "type": "debit"},
        ])
        assert len(txs) == 1
        assert txs[0].amount == Decimal("20.00")

    def test_type_from_sign_when_missing(self):
        txs = normalize_transactions([
            {"amount": -75},
            {"amount": 30, "type": "unknown"},
        ])
        assert [t.type for t in txs] == ["debit", "credit"]
        assert [t.amount for t in txs] == [Decimal("75"), Decimal("30")]

    def test_type_synonyms(self):
        txs = normalize_transactions([
            {"amount": 10, "type": "Income"},
            {"amount": 10, "type": "EXPENSE"},
        ])
        assert [t.type for t in txs] == ["credit", "debit"]

    def test_default_categories(self):
        txs = normalize_transactions([{"amount": 5, "type": "credit"},
                                      {"amount": 5, "type": "debit", "category": " "}])
        assert [t.category for t in txs] == ["Other Income", "Other Expenses"]

    def test_not_a_list(self):
        assert normalize_transactions({"amount": 1}) == []
        assert normalize_transactions(None) == []


class TestRecomputePL:

    def test_credits_and_debits(self):
        pl = recompute_pl(normalize_transactions(_response()["transactions"]))
        assert pl.total_revenue == Decimal("1200")
        assert pl.total_expenses == Decimal("500.0")
        assert pl.net_income == Decimal("700.0")
        assert pl.categories == {"Sales": Decimal("1200"), "Rent": Decimal("450.5"),
                                 "Software": Decimal("49.5")}
        assert pl.source == "transactions"

    def test_category_accumulates_absolute_amounts(self):
        pl = recompute_pl(normalize_transactions([
            {"amount": -100, "type": "debit", "category": "Fees"},
            {"amount": 40, "type": "debit", "category": "Fees"},
        ]))
        assert pl.categories == {"Fees": Decimal("140")}
        assert pl.total_expenses == Decimal("140")


class TestReconcilePL:

    def test_prefers_recomputed_totals(self):
        model_pl = {"totalRevenue": 9999, "totalExpenses": 1, "netIncome": 5}
        pl = reconcile_pl(model_pl, [{"amount": 100, "type": "credit"},
                                     {"amount": 30, "type": "debit"}])
        assert pl.source == "transactions"
        assert pl.total_revenue == Decimal("100")
        assert pl.total_expenses == Decimal("30")
        assert pl.net_income == Decimal("70")

    def test_falls_back_to_model_without_transactions(self):
        pl = reconcile_pl({"totalRevenue": "1,000.00", "totalExpenses": 400, "netIncome": 1}, [])
        assert pl.source == "model"
        assert pl.net_income == Decimal("600.00")

    def test_falls_back_when_recomputed_total_is_zero(self):
        pl = reconcile_pl({"totalRevenue": 50, "totalExpenses": 20},
                          [{"amount": 0, "type": "credit"}])
        assert pl.source == "model"
        assert pl.total_revenue == Decimal("50")

    def test_junk_model_pl(self):
        pl = reconcile_pl("nonsense", [])
        assert pl.total_revenue == Decimal("0")
        assert pl.net_income == Decimal("0")

    def test_net_income_never_taken_from_model(self):
        schema = reconcile_pl({"totalRevenue": 10, "totalExpenses": 4, "netIncome": 100},
                              []).to_schema()
        assert schema.net_income == 6.0


class TestDegradedAnalysis:

    def test_scan_currency_amounts(self):
        assert scan_currency_amounts("paid ($25.00) then $10.00") == [
            Decimal("25.00"), Decimal("10.00")
        ]

    def test_even_split_of_found_amounts(self):
        text = "The statement shows $1,234.56 in deposits and $500.00 in fees"
        result = degraded_analysis(text, "bank_statement", "No JSON object found in AI response",
                                   extracted_at=FIXED_TIME)
        pl = result.pl_statement
        assert pl.total_revenue + pl.total_expenses == pytest.approx(1734.56)
        assert pl.total_revenue == pytest.approx(867.28)
        assert pl.total_expenses == pytest.approx(867.28)
        assert pl.net_income == pytest.approx(0.0)
        assert result.confidence == "low"
        assert result.pl_source == "degraded"
        assert result.parse_error == "No JSON object found in AI response"
        assert result.raw_response == text
        assert result.transactions == []
        assert any("parsing failed" in insight for insight in result.insights)

    def test_odd_cent_split_preserves_total(self):
        result = degraded_analysis("$0.01", "invoice", "bad")
        pl = result.pl_statement
        assert pl.total_revenue + pl.total_expenses == pytest.approx(0.01)

    def test_raw_response_truncated(self):
        result = degraded_analysis("x" * 5000, "invoice", "bad")
        assert len(result.raw_response) == 1000
        assert result.pl_statement.total_revenue == 0.0


class TestBuildAnalysis:

    def test_consistent_response(self):
        result = build_analysis(json.dumps(_response()), "bank_statement",
                                extracted_at=FIXED_TIME)
        assert result.pl_source == "transactions"
        assert result.confidence == "normal"
        assert result.pl_statement.net_income == pytest.approx(700.0)
        assert result.summary.transaction_count == 3
        assert result.insights == ["Healthy month"]

    def test_inconsistent_model_totals_are_recomputed(self):
        body = _response(plStatement={"totalRevenue": 5000, "totalExpenses": 10,
                                      "netIncome": 123, "categories": {}})
        result = build_analysis(json.dumps(body), "bank_statement")
        assert result.pl_statement.total_revenue == pytest.approx(1200.0)
        assert result.pl_statement.total_expenses == pytest.approx(500.0)
        assert result.pl_statement.net_income == pytest.approx(700.0)
        assert any("recomputed" in insight for insight in result.insights)

    def test_summary_recomputed_from_transactions(self):
        body = _response(summary={"totalDebits": 1, "totalCredits": 2, "transactionCount": 99})
        result = build_analysis(json.dumps(body), "bank_statement")
        assert result.summary.total_debits == pytest.approx(500.0)
        assert result.summary.total_credits == pytest.approx(1200.0)
        assert result.summary.transaction_count == 3

    def test_model_totals_without_transactions(self):
        body = _response(transactions=[],
                         plStatement={"totalRevenue": 300, "totalExpenses": 100,
                                      "netIncome": 999})
        result = build_analysis(json.dumps(body), "invoice")
        assert result.pl_source == "model"
        assert result.pl_statement.net_income == pytest.approx(200.0)
        assert result.summary.transaction_count == 3

    def test_fenced_response_with_trailing_commas(self):
        text = '```json\n{"transactions": [{"amount": 10, "type": "credit"},],}\n```'
        result = build_analysis(text, "receipt")
        assert result.pl_statement.total_revenue == pytest.approx(10.0)
        assert result.document_type == "receipt"

    def test_unparseable_response_degrades(self):
        result = build_analysis("Revenue: $1,234.56. Expenses: $500.00.", "bank_statement")
        assert result.pl_source == "degraded"
        assert result.confidence == "low"
        assert result.pl_statement.total_revenue + result.pl_statement.total_expenses == \
            pytest.approx(1734.56)

    def test_out_of_range_amounts_are_dropped(self):
        body = _response(
            transactions=[
                {"amount": 1e30, "type": "credit", "category": "Sales"},
                {"amount": 80, "type": "debit", "category": "Fees"},
            ],
            plStatement={"totalRevenue": 1e40, "totalExpenses": 80,
                         "categories": {"Sales": 1e35}},
        )
        result = build_analysis(json.dumps(body), "bank_statement")
        assert result.pl_source == "transactions"
        assert result.summary.transaction_count == 1
        assert result.pl_statement.total_revenue == pytest.approx(0.0)
        assert result.pl_statement.total_expenses == pytest.approx(80.0)
        assert result.to_record()["plStatement"]["netIncome"] == pytest.approx(-80.0)

    def test_record_is_camel_case_json(self):
        record = build_analysis(json.dumps(_response()), "bank_statement",
                                extracted_at=FIXED_TIME).to_record()
        assert set(record["plStatement"]) == {"totalRevenue", "totalExpenses", "netIncome",
                                              "categories"}
        assert record["plSource"] == "transactions"
        assert record["documentType"] == "bank_statement"
        assert record["extractedAt"].startswith("2025-04-01T12:00:00")
        assert "parseError" not in record
        json.dumps(record)


class TestAggregatePLStatements:

    def test_sums_periods(self):
        totals = aggregate_pl_statements([
            {"totalRevenue": 100, "totalExpenses": 40, "netIncome": 60,
             "categories": {"Sales": 100, "Rent": 40}},
            {"totalRevenue": 50.5, "totalExpenses": 70, "netIncome": -19.5,
             "categories": {"Sales": 50.5, "Rent": 70}},
        ])
        assert totals.total_revenue == pytest.approx(150.5)
        assert totals.total_expenses == pytest.approx(110.0)
        assert totals.net_income == pytest.approx(40.5)
        assert totals.categories == {"Sales": pytest.approx(150.5), "Rent": pytest.approx(110.0)}

    def test_empty(self):
        assert aggregate_pl_statements([]).net_income == 0.0
