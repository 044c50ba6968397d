"""
Tests for audit summaries and JSON, Markdown and HTML report rendering.
"""

import json
from datetime import datetime, timezone

import pytest

from mcp_auditor.config import ReportConfig
from mcp_auditor.errors import ReportError
from mcp_auditor.models import (
    AnalysisResult,
    CheckStatus,
    Grade,
    Recommendation,
    SecurityCategory,
    SecurityCheck,
    Severity,
    Vulnerability,
)
from mcp_auditor.report import create_audit_report, render_report, summarize, write_report


def _result(name="demo <script>", grade=Grade.CRITICAL):
    return AnalysisResult(
        server_id="demo-1",
        server_name=name,
        endpoint="http://demo.test",
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        grade=grade,
        checks=[
            SecurityCheck(
                id="ssl-not-used",
                name="SSL/TLS Usage",
                category=SecurityCategory.ENCRYPTION,
                status=CheckStatus.FAIL,
                severity=Severity.HIGH,
                description="Server is not using SSL/TLS encryption",
                details="protocol=http",
            ),
            SecurityCheck(
                id="cors-configured",
                name="CORS Configuration",
                category=SecurityCategory.CONFIGURATION,
                status=CheckStatus.PASS,
                severity=Severity.LOW,
                description="CORS is properly configured with specific origins",
            ),
        ],
        vulnerabilities=[
            Vulnerability(
                id="unencrypted-communication",
                title="Unencrypted Communication",
                description="Server communication is not encrypted with SSL/TLS",
                severity=Severity.HIGH,
                category=SecurityCategory.ENCRYPTION,
                affected="http://demo.test",
                remediation="Enable HTTPS/WSS to encrypt communications",
            ),
            Vulnerability(
                id="expired-certificate",
                title="Expired SSL Certificate",
                description="The SSL certificate has expired or is not yet valid",
                severity=Severity.CRITICAL,
                category=SecurityCategory.ENCRYPTION,
                affected="http://demo.test",
            ),
        ],
        recommendations=[
            Recommendation(
                id="implement-rate-limiting",
                title="Implement Rate Limiting",
                description="Consider implementing rate limiting to prevent abuse",
                severity=Severity.LOW,
                category=SecurityCategory.AVAILABILITY,
            )
        ],
    )


class TestSummary:
    """Audit-wide summary counts."""

    def test_counts(self):
        """Counts cover vulnerabilities, failed checks and recommendations."""
        empty = _result(name="empty", grade=Grade.EXCELLENT).model_copy(
            update={"checks": [], "vulnerabilities": [], "recommendations": []}
        )
        summary = summarize([_result(), empty])
        assert summary.total_servers == 2
        assert summary.servers_analyzed == 1
        assert summary.critical_vulnerabilities == 1
        # one high vulnerability plus one failed high check
        assert summary.high_severity_issues == 2
        assert summary.recommendations == 1
        assert summary.overall_grade == Grade.FAIR


class TestRenderReport:
    """Rendering reports in each supported format."""

    def test_json(self):
        """JSON output is the serialized report."""
        report = create_audit_report([_result()], duration=2.0)
        data = json.loads(render_report(report, ReportConfig(format="json", output_path="r.json")))
        assert data["id"].startswith("audit-")
        assert data["metadata"]["generated_by"] == "MCP Security Auditor"
        assert data["metadata"]["duration"] == 2.0
        assert data["servers"][0]["grade"] == "F"
        assert data["servers"][0]["checks"][0]["status"] == "fail"

    def test_markdown(self):
        """Markdown output has the summary table and per-server sections."""
        report = create_audit_report([_result()])
        text = render_report(report, ReportConfig(format="markdown", output_path="r.md"))
        assert "| Total Servers | 1 |" in text
        assert "| Overall Security Grade | **F** |" in text
        assert "### demo <script> (Grade: F)" in text
        assert "❌ fail" in text
        assert "✅ pass" in text
        assert "**Expired SSL Certificate** (CRITICAL)" in text
        assert "- **Remediation:** Enable HTTPS/WSS to encrypt communications" in text
        assert "#### Recommendations" in text

    def test_markdown_without_recommendations_or_details(self):
        """Report options drop recommendations and details."""
        report = create_audit_report([_result()])
        options = ReportConfig(
            format="markdown", output_path="r.md", include_recommendations=False, include_details=False
        )
        text = render_report(report, options)
        assert "#### Recommendations" not in text
        assert "protocol=http" not in text

    def test_html_is_escaped_and_graded(self):
        """HTML output escapes server data and colours grades."""
        report = create_audit_report([_result()])
        html = render_report(report, ReportConfig(format="html", output_path="r.html"))
        assert html.startswith("<!DOCTYPE html>")
        assert "demo &lt;script&gt;" in html
        assert "<h3>demo <script></h3>" not in html
        assert 'class="grade grade-F"' in html
        assert "Vulnerabilities (2)" in html
        assert "Recommendations (1)" in html
        assert 'class="check-item check-fail"' in html

    def test_unsupported_format(self, tmp_path):
        """Unknown formats raise ReportError."""
        report = create_audit_report([])
        options = ReportConfig.model_construct(format="pdf", output_path=tmp_path / "r.pdf")
        with pytest.raises(ReportError, match="Unsupported report format: pdf"):
            render_report(report, options)


class TestWriteReport:
    """Writing reports to disk."""

    def test_creates_parent_directories(self, tmp_path):
        """Missing parent directories are created."""
        target = tmp_path / "out" / "deep" / "report.md"
        path = write_report(create_audit_report([_result()]), ReportConfig(format="markdown", output_path=target))
        assert path == target
        assert target.read_text(encoding="utf-8").startswith("# 🔒 MCP Security Audit Report")
