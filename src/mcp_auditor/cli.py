from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import Counter
from pathlib import Path
from typing import List, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .auditor import MCPSecurityAuditor
from .config import (
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_TIMEOUT,
    DiscoveryConfig,
    ReportConfig,
    load_config,
    save_config,
    sources_for,
)
from .errors import AuditorError
from .models import AnalysisResult, Grade, ServerProtocol, ServerRecord, Severity

console = Console()
err_console = Console(stderr=True)

GRADE_STYLES = {
    Grade.EXCELLENT: "bold green",
    Grade.GOOD: "bold blue",
    Grade.FAIR: "bold yellow",
    Grade.POOR: "bold magenta",
    Grade.CRITICAL: "bold red",
}
GRADE_LABELS = {
    Grade.EXCELLENT: "Excellent",
    Grade.GOOD: "Good",
    Grade.FAIR: "Fair",
    Grade.POOR: "Poor",
    Grade.CRITICAL: "Critical",
}
SOURCE_CHOICES = ("local", "vscode", "registry", "api")


def _configure_logging(verbose: bool, quiet: bool = False) -> None:
    log = logging.getLogger("mcp_auditor")
    log.handlers.clear()
    log.addHandler(RichHandler(console=err_console, show_path=False, rich_tracebacks=verbose))
    if verbose:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.WARNING if quiet else logging.INFO)


def _load(config_path: Optional[str], timeout: Optional[float], parallel: Optional[int], exclude: Tuple[str, ...]) -> DiscoveryConfig:
    config = load_config(Path(config_path) if config_path else None)
    update = {}
    if timeout is not None:
        if timeout <= 0:
            raise click.BadParameter("timeout must be positive", param_hint="--timeout")
        update["timeout"] = timeout
    if parallel is not None:
        if parallel < 1:
            raise click.BadParameter("must be at least 1", param_hint="--parallel")
        update["max_concurrent"] = parallel
    if exclude:
        update["exclude_patterns"] = [*config.exclude_patterns, *exclude]
    return config.model_copy(update=update) if update else config


def _grade(grade: Grade) -> str:
    return f"[{GRADE_STYLES[grade]}]{grade.value}[/{GRADE_STYLES[grade]}]"


def _top_issues(results: List[AnalysisResult]) -> List[Tuple[str, str, Severity]]:
    issues = [
        (r.server_name, v.title, v.severity)
        for r in results
        for v in r.vulnerabilities
        if v.severity in (Severity.CRITICAL, Severity.HIGH)
    ]
    issues.sort(key=lambda item: item[2] != Severity.CRITICAL)
    return issues


def _display_summary(results: List[AnalysisResult]) -> None:
    console.rule("Audit Summary")
    grades = Counter(r.grade for r in results)
    table = Table(title=f"Security Grade Distribution ({len(results)} servers)")
    table.add_column("Grade")
    table.add_column("Rating")
    table.add_column("Servers", justify="right")
    for grade in Grade:
        table.add_row(_grade(grade), GRADE_LABELS[grade], str(grades.get(grade, 0)))
    console.print(table)

    critical = sum(1 for r in results for v in r.vulnerabilities if v.severity == Severity.CRITICAL)
    high = sum(1 for r in results for v in r.vulnerabilities if v.severity == Severity.HIGH)
    recommendations = sum(len(r.recommendations) for r in results)
    console.print(f"Critical Vulnerabilities: [red]{critical}[/red]")
    console.print(f"High Severity Issues: [yellow]{high}[/yellow]")
    console.print(f"Total Recommendations: [blue]{recommendations}[/blue]")

    issues = _top_issues(results)
    if issues:
        issue_table = Table(title="Top Issues")
        issue_table.add_column("#", justify="right")
        issue_table.add_column("Server")
        issue_table.add_column("Issue")
        issue_table.add_column("Severity")
        for index, (server, title, severity) in enumerate(issues[:5], start=1):
            issue_table.add_row(str(index), escape(server), escape(title), severity.value.upper())
        console.print(issue_table)


def _display_server(result: AnalysisResult) -> None:
    console.rule("Analysis Summary")
    console.print(f"Server: {escape(result.server_name)}")
    console.print(f"Endpoint: {escape(result.endpoint)}")
    console.print(f"Security Grade: {_grade(result.grade)}")

    table = Table(title="Security Checks")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Severity")
    table.add_column("Details")
    for check in result.checks:
        details = check.details or check.description
        table.add_row(escape(check.name), check.status.value, check.severity.value, escape((details[:120] + "...") if len(details) > 120 else details))
    console.print(table)
    console.print(f"Vulnerabilities: {len(result.vulnerabilities)}  Recommendations: {len(result.recommendations)}")
    for index, vuln in enumerate(result.vulnerabilities, start=1):
        console.print(f"[red]{index}. {escape(vuln.title)} ({vuln.severity.value.upper()})[/red]")
        console.print(f"   {escape(vuln.description)}")


def _write_report(auditor: MCPSecurityAuditor, results: List[AnalysisResult], output: str, fmt: str, config: Optional[DiscoveryConfig] = None) -> None:
    report_config = ReportConfig(format=fmt, output_path=Path(output))
    path = auditor.generate_report(results, report_config, config)
    console.print(f"[green]Report generated: {path}[/green]")


@click.group()
@click.version_option(package_name="mcp-security-auditor")
def main() -> None:
    """MCP Security Auditor - discover and analyze MCP servers for security issues."""


@main.command("audit")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file (JSON or YAML)")
@click.option("--output", type=click.Path(dir_okay=False), help="Write report to file")
@click.option("--format", "fmt", type=click.Choice(["json", "html", "markdown"]), default="html", show_default=True)
@click.option("--timeout", type=float, help="Per-request timeout in seconds")
@click.option("--parallel", type=int, help="Maximum servers analyzed concurrently")
@click.option("--exclude", multiple=True, help="Glob pattern of paths to skip during local discovery, can repeat")
@click.option("--verbose", is_flag=True, default=False)
def audit_cmd(config_path: Optional[str], output: Optional[str], fmt: str, timeout: Optional[float], parallel: Optional[int], exclude: Tuple[str, ...], verbose: bool) -> None:
    """Discover MCP servers and audit each one."""
    _configure_logging(verbose)
    console.print("[bold blue]🔍 MCP Security Auditor[/bold blue]")
    try:
        config = _load(config_path, timeout, parallel, exclude)
        auditor = MCPSecurityAuditor()
        with console.status("Discovering and analyzing MCP servers..."):
            results = asyncio.run(auditor.perform_audit(config))
        console.print(f"Discovered and analyzed {len(results)} servers")
        if not results:
            console.print("[yellow]No MCP servers found to analyze[/yellow]")
            return
        _display_summary(results)
        if output:
            _write_report(auditor, results, output, fmt, config)
    except AuditorError as e:
        raise click.ClickException(f"Audit failed: {e}")


@main.command("discover")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Configuration file (JSON or YAML)")
@click.option("--format", "fmt", type=click.Choice(["json", "text"]), default="text", show_default=True)
@click.option("--timeout", type=float, help="Per-request timeout in seconds")
@click.option("--exclude", multiple=True, help="Glob pattern of paths to skip during local discovery, can repeat")
@click.option("--verbose", is_flag=True, default=False)
def discover_cmd(config_path: Optional[str], fmt: str, timeout: Optional[float], exclude: Tuple[str, ...], verbose: bool) -> None:
    """List discovered MCP servers without analyzing them."""
    _configure_logging(verbose, quiet=fmt == "json")
    try:
        config = _load(config_path, timeout, None, exclude)
        servers = asyncio.run(MCPSecurityAuditor().discover_servers(config))
    except AuditorError as e:
        raise click.ClickException(f"Discovery failed: {e}")

    if fmt == "json":
        click.echo(json.dumps([s.model_dump(mode="json") for s in servers], indent=2))
        return
    console.print(f"Discovered {len(servers)} servers")
    if not servers:
        console.print("[yellow]No MCP servers found[/yellow]")
        return
    table = Table(title="Discovered Servers")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Endpoint")
    table.add_column("Version")
    table.add_column("Protocol")
    table.add_column("Description")
    for index, server in enumerate(servers, start=1):
        table.add_row(str(index), escape(server.name), escape(server.endpoint or "-"), escape(server.version), server.protocol.value, escape(server.description or ""))
    console.print(table)


@main.command("init")
@click.option("--path", "config_path", type=click.Path(dir_okay=False), default="./mcp-audit.config.json", show_default=True)
@click.option("--sources", multiple=True, type=click.Choice(SOURCE_CHOICES), default=("local", "vscode"), show_default=True)
@click.option("--timeout", type=float, default=DEFAULT_TIMEOUT, show_default=True, help="Per-request timeout in seconds")
@click.option("--parallel", type=int, default=DEFAULT_MAX_CONCURRENT, show_default=True)
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing file without asking")
def init_cmd(config_path: str, sources: Tuple[str, ...], timeout: float, parallel: int, force: bool) -> None:
    """Write a starter configuration file."""
    path = Path(config_path)
    if path.exists() and not force:
        if not click.confirm(f"Configuration file {path} already exists. Overwrite?", default=False):
            console.print("[yellow]Configuration initialization cancelled.[/yellow]")
            return
    try:
        config = DiscoveryConfig(
            sources=sources_for(sources),
            timeout=timeout,
            max_concurrent=parallel,
            exclude_patterns=["**/node_modules/**", "**/.*"],
        )
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration: {e}")
    except AuditorError as e:
        raise click.ClickException(str(e))
    save_config(config, path)
    console.print(f"[green]✅ Configuration saved to {path}[/green]")
    console.print("You can now run: mcp-auditor audit --config " + str(path))


@main.command("server")
@click.argument("endpoint")
@click.option("--output", type=click.Path(dir_okay=False), help="Write report to file")
@click.option("--format", "fmt", type=click.Choice(["json", "html", "markdown"]), default="json", show_default=True)
@click.option("--timeout", type=float, default=DEFAULT_TIMEOUT, show_default=True, help="Per-request timeout in seconds")
@click.option("--verbose", is_flag=True, default=False)
def server_cmd(endpoint: str, output: Optional[str], fmt: str, timeout: float, verbose: bool) -> None:
    """Analyze a single MCP server endpoint."""
    _configure_logging(verbose)
    console.print(f"[bold blue]🔍 MCP Server Analysis[/bold blue] {escape(endpoint)}")
    server = ServerRecord(
        id=f"manual-{int(time.time() * 1000)}",
        name="Manual Server",
        endpoint=endpoint,
        protocol=ServerProtocol.from_endpoint(endpoint),
        owner="Unknown",
    )
    try:
        config = DiscoveryConfig(timeout=timeout)
        auditor = MCPSecurityAuditor()
        with console.status("Analyzing server..."):
            result = asyncio.run(auditor.analyze_server(server, config))
        _display_server(result)
        if output:
            _write_report(auditor, [result], output, fmt)
    except ValueError as e:
        raise click.ClickException(f"Invalid option: {e}")
    except AuditorError as e:
        raise click.ClickException(f"Analysis failed: {e}")


if __name__ == "__main__":
    main()
