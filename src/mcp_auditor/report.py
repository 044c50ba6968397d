"""
Audit report assembly and rendering.

Reports are rendered to a string first (JSON, Markdown or HTML) and then
written to ``ReportConfig.output_path``; HTML goes through the Jinja2
template shipped in ``templates/``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import VERSION, DiscoveryConfig, ReportConfig
from .errors import ReportError
from .models import (
    AnalysisResult,
    AuditReport,
    AuditSummary,
    CheckStatus,
    ReportMetadata,
    Severity,
)
from .scoring import aggregate_grade

GENERATED_BY = "MCP Security Auditor"
TEMPLATE_DIR = Path(__file__).parent / "templates"

STATUS_EMOJI = {
    CheckStatus.PASS: "✅",
    CheckStatus.FAIL: "❌",
    CheckStatus.WARNING: "⚠️",
    CheckStatus.ERROR: "🔥",
    CheckStatus.SKIP: "⏭️",
}


def summarize(results: Iterable[AnalysisResult]) -> AuditSummary:
    results = list(results)
    critical = sum(1 for r in results for v in r.vulnerabilities if v.severity == Severity.CRITICAL)
    high_vulns = sum(1 for r in results for v in r.vulnerabilities if v.severity == Severity.HIGH)
    high_failed = sum(
        1 for r in results for c in r.checks if c.severity == Severity.HIGH and c.status == CheckStatus.FAIL
    )
    return AuditSummary(
        total_servers=len(results),
        servers_analyzed=sum(1 for r in results if r.checks),
        overall_grade=aggregate_grade([r.grade for r in results]),
        critical_vulnerabilities=critical,
        high_severity_issues=high_vulns + high_failed,
        recommendations=sum(len(r.recommendations) for r in results),
    )


def create_audit_report(
    results: List[AnalysisResult],
    config: Optional[DiscoveryConfig] = None,
    duration: float = 0.0,
) -> AuditReport:
    metadata = ReportMetadata(
        version=VERSION,
        generated_by=GENERATED_BY,
        duration=duration,
        config=config.model_dump(mode="json", exclude_none=True) if config else None,
    )
    return AuditReport.new(servers=list(results), summary=summarize(results), metadata=metadata)


def _cell(text: Optional[str]) -> str:
    return (text or "").replace("|", "\\|").replace("\n", " ")


def render_markdown(report: AuditReport, report_config: ReportConfig) -> str:
    summary = report.summary
    lines: List[str] = [
        "# 🔒 MCP Security Audit Report",
        "",
        f"**Generated:** {report.timestamp:%Y-%m-%d %H:%M:%S %Z}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total Servers | {summary.total_servers} |",
        f"| Servers Analyzed | {summary.servers_analyzed} |",
        f"| Overall Security Grade | **{summary.overall_grade.value}** |",
        f"| Critical Vulnerabilities | {summary.critical_vulnerabilities} |",
        f"| High Severity Issues | {summary.high_severity_issues} |",
        f"| Recommendations | {summary.recommendations} |",
        "",
        "## Server Analysis Results",
        "",
    ]

    for server in report.servers:
        lines += [
            f"### {server.server_name} (Grade: {server.grade.value})",
            "",
            f"**Endpoint:** {server.endpoint}  ",
            f"**Analyzed:** {server.timestamp:%Y-%m-%d %H:%M:%S %Z}",
            "",
            "#### Security Checks",
            "",
        ]
        if report_config.include_details:
            lines += ["| Check | Status | Severity | Description | Details |", "|-------|--------|----------|-------------|---------|"]
        else:
            lines += ["| Check | Status | Severity | Description |", "|-------|--------|----------|-------------|"]
        for check in server.checks:
            row = f"| {_cell(check.name)} | {STATUS_EMOJI[check.status]} {check.status.value} | {check.severity.value} | {_cell(check.description)} |"
            if report_config.include_details:
                row += f" {_cell(check.details)} |"
            lines.append(row)
        lines.append("")

        if server.vulnerabilities:
            lines += ["#### Vulnerabilities", ""]
            for vuln in server.vulnerabilities:
                lines += [
                    f"**{vuln.title}** ({vuln.severity.value.upper()})",
                    f"- **Description:** {vuln.description}",
                    f"- **Category:** {vuln.category.value}",
                    f"- **Affected:** {vuln.affected}",
                ]
                if vuln.remediation:
                    lines.append(f"- **Remediation:** {vuln.remediation}")
                lines.append("")

        if report_config.include_recommendations and server.recommendations:
            lines += ["#### Recommendations", ""]
            for rec in server.recommendations:
                lines += [
                    f"- **{rec.title}** ({rec.severity.value.upper()})",
                    f"  - {rec.description}",
                    f"  - Action Required: {'Yes' if rec.action_required else 'No'}",
                ]
            lines.append("")

        lines += ["---", ""]

    return "\n".join(lines)


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_html(report: AuditReport, report_config: ReportConfig) -> str:
    template = _environment().get_template("report.html.j2")
    return template.render(report=report, summary=report.summary, options=report_config)


def render_report(report: AuditReport, report_config: ReportConfig) -> str:
    if report_config.format == "json":
        return report.model_dump_json(indent=2)
    if report_config.format == "markdown":
        return render_markdown(report, report_config)
    if report_config.format == "html":
        return render_html(report, report_config)
    raise ReportError(f"Unsupported report format: {report_config.format}")


def write_report(report: AuditReport, report_config: ReportConfig) -> Path:
    """Render ``report`` and write it to the configured path, creating parent directories."""
    content = render_report(report, report_config)
    path = Path(report_config.output_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ReportError(f"Failed to write report to {path}: {e}", details={"path": str(path)}) from e
    return path
