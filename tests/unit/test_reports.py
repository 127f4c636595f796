"""Unit tests for incident_agent/reports/generator.py."""

from __future__ import annotations

from incident_agent.core.models import DiagnosticBundle
from incident_agent.reports.generator import (
    _fmt_metric,
    render_analysis_prompt,
    render_fallback_report,
)


class TestFormatMetric:
    def test_value_with_unit(self):
        assert _fmt_metric(91.2, "%") == "91.2%"

    def test_none(self):
        assert _fmt_metric(None, "ms") == "N/A"


class TestAnalysisPrompt:
    def test_includes_incident_and_diagnostics(self, sample_incident, sample_diagnostics):
        prompt = render_analysis_prompt(sample_incident, sample_diagnostics)
        assert "**Title:** High Error Rate" in prompt
        assert "**Severity:** critical" in prompt
        assert "### Logs (4 entries)" in prompt
        assert "[ERROR] 2025-01-15T10:00:00 - ERROR: Connection refused" in prompt
        assert "- **cpu_usage_percent:** 91.2" in prompt
        assert "- **Status:** degraded" in prompt
        assert "- **Database:** fail" in prompt
        assert "PREVIOUS STEPS" not in prompt

    def test_metric_identity_fields_omitted(self, sample_incident, sample_diagnostics):
        prompt = render_analysis_prompt(sample_incident, sample_diagnostics)
        assert "**service:**" not in prompt

    def test_history_appended(self, sample_incident, sample_diagnostics):
        history = [{"role": "assistant", "content": "Step 1: [check_logs] Collecting logs"}]
        prompt = render_analysis_prompt(sample_incident, sample_diagnostics, history)
        assert "## PREVIOUS STEPS" in prompt
        assert "Step 1: [check_logs] Collecting logs" in prompt

    def test_missing_health_data(self, sample_incident):
        prompt = render_analysis_prompt(sample_incident, DiagnosticBundle())
        assert "- **Status:** unknown" in prompt
        assert "- **Http:** N/A" in prompt


class TestFallbackReport:
    def test_counts_and_top_errors(self, sample_incident, sample_diagnostics):
        report = render_fallback_report(sample_incident, sample_diagnostics)
        assert "Found **2 errors** and **1 warnings** in 4 log entries." in report
        assert "* `ERROR: Connection refused to database cluster primary node`" in report
        assert "* `ERROR: Request timeout after 30000ms - upstream unresponsive`" in report

    def test_top_errors_capped_at_three(self, sample_incident):
        logs = [
            {"level": "error", "message": f"ERROR: failure {i}", "timestamp": "t"}
            for i in range(6)
        ]
        report = render_fallback_report(sample_incident, DiagnosticBundle(logs=logs))
        assert "failure 2" in report
        assert "failure 3" not in report

    def test_metrics_and_health(self, sample_incident, sample_diagnostics):
        report = render_fallback_report(sample_incident, sample_diagnostics)
        assert "* **CPU Usage:** 91.2%" in report
        assert "* **P99 Latency:** 3200ms" in report
        assert "* **Pod Restarts (1hr):** 6" in report
        assert "**Status:** degraded | **Response Time:** 1800ms" in report
        assert "`api-gateway`" in report

    def test_missing_metrics_render_na(self, sample_incident):
        report = render_fallback_report(sample_incident, DiagnosticBundle())
        assert "* **CPU Usage:** N/A" in report
        assert "Found **0 errors** and **0 warnings** in 0 log entries." in report
