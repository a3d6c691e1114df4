"""Tests for merging query results into chart rows.

WHAT: merge_query_run_results, combine_rows, shift_run_results
WHY: The chart reads one row per bucket with every column present; a missing
     cell renders as a gap or crashes the legend

REFERENCES:
  - querybuilder/timeseries/merge.py
"""

from querybuilder.tests.conftest import make_result
from querybuilder.timeseries.merge import (
    combine_rows,
    merge_query_run_results,
    shift_run_results,
    to_display_name_by_id,
)

T1 = "2026-01-01 00:00:00"
T2 = "2026-01-01 00:05:00"
T1_ISO = "2026-01-01T00:00:00.000Z"
T2_ISO = "2026-01-01T00:05:00.000Z"


class TestMergeGroupedQueries:

    def test_grouped_columns_and_zero_fill(self):
        """A:{checkout, billing} and B:{checkout}; billing missing later -> 0."""
        errors = make_result("q-a", "A", {T1: {"checkout": 2, "billing": 1}, T2: {"checkout": 4}})
        throughput = make_result("q-b", "B", {T1: {"checkout": 5}})

        merged = merge_query_run_results([errors, throughput], {"q-a": "Errors", "q-b": "Throughput"})

        assert merged.series_names == ["Errors: checkout", "Errors: billing", "Throughput: checkout"]
        assert merged.rows_by_bucket[T1_ISO] == {
            "bucket": T1_ISO,
            "Errors: checkout": 2,
            "Errors: billing": 1,
            "Throughput: checkout": 5,
        }
        assert merged.rows_by_bucket[T2_ISO]["Errors: billing"] == 0
        assert merged.rows_by_bucket[T2_ISO]["Throughput: checkout"] == 0

    def test_every_row_has_every_column(self):
        a = make_result("q-a", "A", {T1: {"all": 1}})
        b = make_result("q-b", "B", {T2: {"all": 2}})

        merged = merge_query_run_results([a, b], {"q-a": "A", "q-b": "B"})

        for row in merged.rows_by_bucket.values():
            for name in merged.series_names:
                assert isinstance(row[name], (int, float))


class TestColumnNaming:

    def test_ungrouped_all_uses_display_name(self):
        result = make_result("q-a", "A", {T1: {"all": 7}})

        merged = merge_query_run_results([result], {"q-a": "Requests"})

        assert merged.series_names == ["Requests"]
        assert merged.series_name_by_stable_key == {"q-a::__all__": "Requests"}

    def test_formula_named_after_legend_uses_display_name(self):
        formula = make_result("f-1", "F1", {T1: {"Error ratio": 0.5}}, source="formula")

        merged = merge_query_run_results([formula], {"f-1": "Error ratio"})

        assert merged.series_names == ["Error ratio"]

    def test_display_name_falls_back_to_query_name(self):
        result = make_result("q-a", "A", {T1: {"all": 1}})

        merged = merge_query_run_results([result], {})

        assert merged.series_names == ["A"]

    def test_colliding_names_are_disambiguated(self):
        a = make_result("q-a", "A", {T1: {"all": 1}})
        b = make_result("q-b", "B", {T1: {"all": 2}})

        merged = merge_query_run_results([a, b], {"q-a": "Latency", "q-b": "Latency"})

        assert merged.series_names == ["Latency", "Latency (2)"]

    def test_blank_group_name_is_unnamed(self):
        result = make_result("q-a", "A", {T1: {" ": 1, "api": 2}})

        merged = merge_query_run_results([result], {"q-a": "Errors"})

        assert "Errors: unnamed" in merged.series_names

    def test_suffix_and_shared_used_names(self):
        used = set()
        current = merge_query_run_results(
            [make_result("q-a", "A", {T1: {"all": 1}})], {"q-a": "Requests"}, used_series_names=used
        )
        previous = merge_query_run_results(
            [make_result("q-a", "A", {T1: {"all": 2}})],
            {"q-a": "Requests"},
            series_suffix=" (prev)",
            used_series_names=used,
        )

        assert current.series_names == ["Requests"]
        assert previous.series_names == ["Requests (prev)"]
        assert previous.series_name_by_stable_key["q-a::__all__"] == "Requests (prev)"


class TestSkippedResults:

    def test_errors_and_empty_results_add_no_columns(self):
        failed = make_result("q-a", "A", status="error", error="boom")
        shells = make_result("q-b", "B", {T1: {}})
        ok = make_result("q-c", "C", {T1: {"all": 3}})

        merged = merge_query_run_results([failed, shells, ok], {})

        assert merged.series_names == ["C"]

    def test_non_finite_values_are_dropped(self):
        result = make_result("q-a", "A", {T1: {"all": float("nan")}, T2: {"all": 4}})

        merged = merge_query_run_results([result], {})

        assert merged.rows_by_bucket[T1_ISO]["A"] == 0
        assert merged.rows_by_bucket[T2_ISO]["A"] == 4


class TestCombineAndShift:

    def test_combine_sorts_and_zero_fills(self):
        later = merge_query_run_results([make_result("q-a", "A", {T2: {"all": 1}})], {})
        earlier = merge_query_run_results(
            [make_result("q-b", "B", {T1: {"all": 2}})], {}, series_suffix=" (prev)"
        )

        rows = combine_rows([later, earlier])

        assert [row["bucket"] for row in rows] == [T1_ISO, T2_ISO]
        assert rows[0] == {"bucket": T1_ISO, "A": 0, "B (prev)": 2}
        assert rows[1] == {"bucket": T2_ISO, "A": 1, "B (prev)": 0}

    def test_shift_moves_buckets_forward(self):
        shifted = shift_run_results([make_result("q-a", "A", {T1: {"all": 1}})], 300)

        assert shifted[0].data[0].bucket == T2_ISO
        assert shifted[0].data[0].series == {"all": 1}

    def test_display_names_prefer_trimmed_legend(self):
        names = to_display_name_by_id([("q-a", "A", "  Requests "), ("q-b", "B", "  ")])

        assert names == {"q-a": "Requests", "q-b": "B"}
