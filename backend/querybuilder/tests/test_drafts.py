"""Tests for building QuerySpecs from query-builder drafts.

WHAT: parse_where_clause, build_timeseries_query_spec
WHY: Users type free-form WHERE clauses; unsupported parts must warn, not fail

REFERENCES:
  - querybuilder/timeseries/drafts.py
"""

from querybuilder.timeseries.drafts import (
    INVALID_STEP_WARNING,
    QueryDraft,
    build_timeseries_query_spec,
    parse_where_clause,
)


def _draft(**kwargs) -> QueryDraft:
    return QueryDraft(id="q-1", name="A", **kwargs)


class TestParseWhereClause:

    def test_quoted_and_bare_values(self):
        clauses, warnings = parse_where_clause(
            """service.name = "checkout api" and severity = ERROR AND attr.route = '/pay'"""
        )

        assert [(c.key, c.value) for c in clauses] == [
            ("service.name", "checkout api"),
            ("severity", "ERROR"),
            ("attr.route", "/pay"),
        ]
        assert warnings == []

    def test_keys_are_lowercased(self):
        clauses, _ = parse_where_clause("Service.Name = checkout")

        assert clauses[0].key == "service.name"

    def test_unsupported_syntax_warns(self):
        clauses, warnings = parse_where_clause("service != checkout")

        assert clauses == []
        assert warnings == ["Unsupported clause syntax ignored: service != checkout"]

    def test_blank(self):
        assert parse_where_clause("  ") == ([], [])


class TestTracesDrafts:

    def test_filters_and_group_by(self):
        result = build_timeseries_query_spec(
            _draft(
                aggregation="p95_duration",
                where_clause='service = checkout AND env = "prod, staging" AND root_only = yes',
                group_by="span.name",
            )
        )

        assert result.error is None
        assert result.query.source == "traces"
        assert result.query.metric == "p95_duration"
        assert result.query.group_by == "span_name"
        assert result.query.filters == {
            "serviceName": "checkout",
            "environments": ["prod", "staging"],
            "rootSpansOnly": True,
        }

    def test_unsupported_metric_is_an_error(self):
        result = build_timeseries_query_spec(_draft(aggregation="sum"))

        assert result.query is None
        assert result.error == "Unsupported traces metric: sum"

    def test_only_first_attr_filter_is_used(self):
        result = build_timeseries_query_spec(_draft(where_clause="attr.a = 1 AND attr.b = 2"))

        assert result.query.filters == {"attributeKey": "a", "attributeValue": "1"}
        assert result.warnings == ["Multiple attr.* filters found; only a is used"]

    def test_attribute_group_by(self):
        result = build_timeseries_query_spec(_draft(group_by="attr.http.route"))

        assert result.query.group_by == "attribute"
        assert result.query.filters == {"attributeKey": "http.route"}

    def test_invalid_root_only_and_unknown_filter_warn(self):
        result = build_timeseries_query_spec(_draft(where_clause="root_only = maybe AND color = red"))

        assert result.query.filters is None
        assert result.warnings == [
            "Invalid root_only value ignored: maybe",
            "Unsupported traces filter ignored: color",
        ]

    def test_group_by_ignored_when_add_on_disabled(self):
        result = build_timeseries_query_spec(_draft(group_by="service", add_ons={"group_by": False}))

        assert result.query.group_by is None


class TestStepInterval:

    def test_blank_is_auto(self):
        result = build_timeseries_query_spec(_draft(step_interval=""))

        assert result.query.bucket_seconds is None
        assert result.warnings == []

    def test_shorthand_is_explicit(self):
        assert build_timeseries_query_spec(_draft(step_interval="5m")).query.bucket_seconds == 300
        assert build_timeseries_query_spec(_draft(step_interval="2h")).query.bucket_seconds == 7200

    def test_invalid_falls_back_to_auto_with_warning(self):
        result = build_timeseries_query_spec(_draft(step_interval="every minute"))

        assert result.query.bucket_seconds is None
        assert INVALID_STEP_WARNING in result.warnings


class TestLogsAndMetricsDrafts:

    def test_logs_count_by_severity(self):
        result = build_timeseries_query_spec(
            _draft(data_source="logs", where_clause="severity = ERROR", group_by="severity")
        )

        assert result.query.source == "logs"
        assert result.query.filters == {"severity": "ERROR"}
        assert result.query.group_by == "severity"

    def test_logs_only_support_count(self):
        result = build_timeseries_query_spec(_draft(data_source="logs", aggregation="avg"))

        assert result.error == "Logs source currently supports only count metric"

    def test_metrics_require_name(self):
        result = build_timeseries_query_spec(_draft(data_source="metrics", aggregation="avg"))

        assert result.error == "Metric source requires metric name and metric type"

    def test_metrics_filters(self):
        result = build_timeseries_query_spec(
            _draft(
                data_source="metrics",
                aggregation="max",
                metric_name="http.server.duration",
                metric_type="histogram",
                where_clause="service.name = api AND metric.type = bogus",
                group_by="service",
            )
        )

        assert result.query.filters == {
            "metricName": "http.server.duration",
            "metricType": "histogram",
            "serviceName": "api",
        }
        assert result.warnings == ["Invalid metric.type ignored: bogus"]
        assert result.query.group_by == "service"

    def test_unknown_source(self):
        result = build_timeseries_query_spec(_draft(data_source="events"))

        assert result.error == "Unsupported data source: events"
