"""Tests for the formula compiler and per-bucket evaluator.

WHAT: compile_formula, evaluate_compiled_formula, build_formula_results
WHY: Formulas must never invent values: a missing operand skips the bucket
     and dividing by zero skips the bucket, each with a visible warning

REFERENCES:
  - querybuilder/timeseries/formula.py
"""

import pytest

from querybuilder.tests.conftest import make_result
from querybuilder.timeseries.errors import FormulaError
from querybuilder.timeseries.formula import (
    build_formula_results,
    compile_formula,
    evaluate_compiled_formula,
)
from querybuilder.timeseries.model import FormulaDraft

T1 = "2026-02-10 11:56:00"
T2 = "2026-02-10 11:57:00"
T3 = "2026-02-10 11:58:00"

RATIO = FormulaDraft(id="f-1", name="F1", expression="A / B", legend="ratio")


def _evaluate(expression, **values):
    return evaluate_compiled_formula(compile_formula(expression), {k.upper(): v for k, v in values.items()})


class TestCompileAndEvaluate:

    def test_precedence(self):
        assert _evaluate("A + B * 2", a=1, b=3) == 7

    def test_parentheses(self):
        assert _evaluate("(A + B) * 2", a=1, b=3) == 8

    def test_left_associative_division(self):
        assert _evaluate("A / B / 2", a=8, b=2) == 2

    def test_unary_minus(self):
        assert _evaluate("-A + 10", a=4) == 6
        assert _evaluate("2 * (-A)", a=4) == -8

    def test_numbers_and_decimals(self):
        assert _evaluate("A * 100 / .5", a=1) == 200

    def test_identifiers_are_case_insensitive(self):
        compiled = compile_formula("errors / Requests")

        assert compiled.identifiers == ["ERRORS", "REQUESTS"]

    def test_division_by_zero_is_flagged(self):
        with pytest.raises(FormulaError) as exc_info:
            _evaluate("A / B", a=1, b=0)

        assert exc_info.value.is_division_by_zero

    @pytest.mark.parametrize(
        "expression,message",
        [
            ("", "Formula expression is empty"),
            ("   ", "Formula expression is empty"),
            ("(A + B", "Mismatched parentheses in formula"),
            ("A + B)", "Mismatched parentheses in formula"),
            ("A +", "Invalid formula expression"),
            ("A B", "Invalid formula expression"),
        ],
    )
    def test_invalid_expressions(self, expression, message):
        with pytest.raises(FormulaError) as exc_info:
            compile_formula(expression)

        assert exc_info.value.message == message

    def test_invalid_token(self):
        with pytest.raises(FormulaError) as exc_info:
            compile_formula("A % B")

        assert "Invalid token" in exc_info.value.message


class TestBuildFormulaResults:

    def test_division_by_zero_bucket_is_skipped(self):
        """A=[10,8], B=[2,0] -> only t1, warning names t2."""
        a = make_result("q-a", "A", {T1: {"all": 10}, T2: {"all": 8}})
        b = make_result("q-b", "B", {T1: {"all": 2}, T2: {"all": 0}})

        [result] = build_formula_results([RATIO], [a, b])

        assert result.status == "success"
        assert result.source == "formula"
        assert [(row.bucket, row.series) for row in result.data] == [(T1, {"ratio": 5})]
        assert any("division by zero" in w and T2 in w for w in result.warnings)

    def test_missing_operand_bucket_is_skipped(self):
        """B has no t2 row: same data, one aggregate missing warning."""
        a = make_result("q-a", "A", {T1: {"all": 10}, T2: {"all": 8}})
        b = make_result("q-b", "B", {T1: {"all": 2}})

        [result] = build_formula_results([RATIO], [a, b])

        assert [(row.bucket, row.series) for row in result.data] == [(T1, {"ratio": 5})]
        assert len(result.warnings) == 1
        assert "missing values for formula operands" in result.warnings[0]
        assert not any("division by zero" in w for w in result.warnings)

    def test_empty_series_row_counts_as_missing(self):
        a = make_result("q-a", "A", {T1: {"all": 10}, T2: {"all": 8}})
        b = make_result("q-b", "B", {T1: {"all": 2}, T2: {}})

        [result] = build_formula_results([RATIO], [a, b])

        assert len(result.data) == 1
        assert "missing values for formula operands" in result.warnings[0]

    def test_missing_warning_is_aggregated(self):
        a = make_result("q-a", "A", {T1: {"all": 1}, T2: {"all": 1}, T3: {"all": 1}})
        b = make_result("q-b", "B", {T1: {"all": 1}})

        [result] = build_formula_results([RATIO], [a, b])

        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Skipped 2 buckets")

    def test_all_missing_is_an_error(self):
        a = make_result("q-a", "A", {T1: {"all": 1}})
        b = make_result("q-b", "B", {T2: {"all": 1}})

        [result] = build_formula_results([RATIO], [a, b])

        assert result.status == "error"
        assert result.error == "Formula produced no valid buckets"
        assert result.data == []

    def test_all_division_by_zero_is_an_error_with_warnings(self):
        a = make_result("q-a", "A", {T1: {"all": 1}, T2: {"all": 2}})
        b = make_result("q-b", "B", {T1: {"all": 0}, T2: {"all": 0}})

        [result] = build_formula_results([RATIO], [a, b])

        assert result.status == "error"
        assert result.error == "Formula produced no valid buckets due to division by zero"
        assert len(result.warnings) == 2

    def test_buckets_are_matched_across_formats(self):
        """Same instant in two formats is one bucket; output keeps the first-seen form."""
        a = make_result("q-a", "A", {T1: {"all": 9}})
        b = make_result("q-b", "B", {"2026-02-10T11:56:00.000Z": {"all": 3}})

        [result] = build_formula_results([RATIO], [a, b])

        assert [(row.bucket, row.series) for row in result.data] == [(T1, {"ratio": 3})]

    def test_output_is_in_time_order(self):
        a = make_result("q-a", "A", {T2: {"all": 4}, T1: {"all": 2}})
        b = make_result("q-b", "B", {T1: {"all": 1}, T2: {"all": 1}})

        [result] = build_formula_results([RATIO], [a, b])

        assert [row.bucket for row in result.data] == [T1, T2]

    def test_unknown_reference_only_fails_that_formula(self):
        a = make_result("q-a", "A", {T1: {"all": 4}})
        b = make_result("q-b", "B", {T1: {"all": 2}})
        broken = FormulaDraft(id="f-2", name="F2", expression="A / C", legend="")

        broken_result, ratio_result = build_formula_results([broken, RATIO], [a, b])

        assert broken_result.status == "error"
        assert broken_result.error == "Unknown references: C"
        assert ratio_result.status == "success"

    def test_failed_queries_are_not_bindable(self):
        a = make_result("q-a", "A", {T1: {"all": 4}})
        b = make_result("q-b", "B", status="error", error="boom")

        [result] = build_formula_results([RATIO], [a, b])

        assert result.error == "Unknown references: B"

    def test_grouped_operand_is_summed_per_bucket(self):
        a = make_result("q-a", "A", {T1: {"checkout": 3, "billing": 7}})
        b = make_result("q-b", "B", {T1: {"all": 2}})

        [result] = build_formula_results([RATIO], [a, b])

        assert result.status == "success"
        assert result.data[0].series == {"ratio": 5}

    def test_non_numeric_values_are_missing_not_fatal(self):
        a = make_result("q-a", "A", {T1: {"all": "10"}, T2: {"all": "n/a"}})
        b = make_result("q-b", "B", {T1: {"all": 2}, T2: {"all": 2}})

        [result] = build_formula_results([RATIO], [a, b])

        assert result.status == "success"
        assert [row.series for row in result.data] == [{"ratio": 5}]
        assert "missing values for formula operands" in result.warnings[0]

    def test_unknown_reference_carries_error_code(self):
        a = make_result("q-a", "A", {T1: {"all": 4}})

        [result] = build_formula_results([RATIO], [a])

        assert result.error_code == "ERR_021"

    def test_legend_falls_back_to_name(self):
        a = make_result("q-a", "A", {T1: {"all": 4}})
        b = make_result("q-b", "B", {T1: {"all": 2}})

        [result] = build_formula_results([FormulaDraft(id="f-1", name="F1", expression="A - B")], [a, b])

        assert result.data[0].series == {"F1": 2}

    def test_later_formula_can_use_earlier_one(self):
        a = make_result("q-a", "A", {T1: {"all": 4}})
        b = make_result("q-b", "B", {T1: {"all": 2}})
        percent = FormulaDraft(id="f-2", name="F2", expression="F1 * 100", legend="pct")

        _, result = build_formula_results([RATIO, percent], [a, b])

        assert result.data[0].series == {"pct": 200}

    def test_constant_formula_uses_all_query_buckets(self):
        a = make_result("q-a", "A", {T1: {"all": 4}, T2: {"all": 1}})

        [result] = build_formula_results([FormulaDraft(id="f-1", name="F1", expression="42")], [a])

        assert [row.series for row in result.data] == [{"F1": 42}, {"F1": 42}]

    def test_invalid_expression_is_an_error_result(self):
        a = make_result("q-a", "A", {T1: {"all": 4}})

        [result] = build_formula_results([FormulaDraft(id="f-1", name="F1", expression="(A")], [a])

        assert result.status == "error"
        assert result.error == "Mismatched parentheses in formula"

    def test_no_formulas(self):
        assert build_formula_results([], [make_result("q-a", "A", {T1: {"all": 1}})]) == []
