from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence

from .analyzer import SecurityAnalyzer
from .config import DEFAULT_MAX_CONCURRENT, DiscoveryConfig, ProbeConfig, ReportConfig
from .discovery import DiscoveryService, flatten_servers
from .models import AnalysisResult, AuditReport, ServerRecord
from .report import create_audit_report, write_report


async def audit_all(
    servers: Sequence[ServerRecord],
    analyzer: Optional[SecurityAnalyzer] = None,
    max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    logger: Optional[logging.Logger] = None,
) -> List[AnalysisResult]:
    """Analyze every server concurrently; failed analyses are logged and left out.

    Results are returned in completion order, not input order.
    """
    log = logger or logging.getLogger(__name__)
    analyzer = analyzer or SecurityAnalyzer(logger=log)
    semaphore = asyncio.Semaphore(max(1, max_concurrent))
    results: List[AnalysisResult] = []

    async def _analyze(server: ServerRecord) -> None:
        async with semaphore:
            log.info("Analyzing %s (%s)", server.name, server.endpoint or "<no endpoint>")
            result = await analyzer.analyze(server)
        results.append(result)

    outcomes = await asyncio.gather(*(_analyze(s) for s in servers), return_exceptions=True)
    for server, outcome in zip(servers, outcomes):
        if isinstance(outcome, BaseException):
            log.error("Failed to analyze %s: %s", server.name, outcome)
    log.info("Completed security analysis for %d of %d servers", len(results), len(servers))
    return results


class MCPSecurityAuditor:
    """Discovery, analysis and reporting wired together."""

    def __init__(
        self,
        discovery: Optional[DiscoveryService] = None,
        probe_config: Optional[ProbeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.discovery = discovery or DiscoveryService(logger=self.logger)
        self.probe_config = probe_config
        self.last_duration = 0.0

    def _analyzer(self, config: Optional[DiscoveryConfig] = None) -> SecurityAnalyzer:
        probe_config = self.probe_config or (config.probe_config() if config else ProbeConfig())
        return SecurityAnalyzer(config=probe_config, logger=self.logger)

    async def discover_servers(self, config: DiscoveryConfig) -> List[ServerRecord]:
        results = await self.discovery.discover_servers(config)
        for result in results:
            for error in result.errors:
                self.logger.warning("Discovery source %s reported: %s", result.source, error)
        return flatten_servers(results)

    async def analyze_server(self, server: ServerRecord, config: Optional[DiscoveryConfig] = None) -> AnalysisResult:
        return await self._analyzer(config).analyze(server)

    async def audit_servers(self, servers: Sequence[ServerRecord], config: Optional[DiscoveryConfig] = None) -> List[AnalysisResult]:
        max_concurrent = config.max_concurrent if config else DEFAULT_MAX_CONCURRENT
        return await audit_all(servers, analyzer=self._analyzer(config), max_concurrent=max_concurrent, logger=self.logger)

    async def perform_audit(self, config: DiscoveryConfig) -> List[AnalysisResult]:
        started = time.monotonic()
        self.logger.info("Starting MCP server discovery")
        servers = await self.discover_servers(config)
        self.logger.info("Discovered %d MCP servers", len(servers))
        if not servers:
            self.last_duration = time.monotonic() - started
            return []
        results = await self.audit_servers(servers, config)
        self.last_duration = time.monotonic() - started
        return results

    def build_report(
        self,
        results: List[AnalysisResult],
        config: Optional[DiscoveryConfig] = None,
        duration: Optional[float] = None,
    ) -> AuditReport:
        return create_audit_report(results, config=config, duration=self.last_duration if duration is None else duration)

    def generate_report(
        self,
        results: List[AnalysisResult],
        report_config: ReportConfig,
        config: Optional[DiscoveryConfig] = None,
    ) -> Path:
        path = write_report(self.build_report(results, config), report_config)
        self.logger.info("Report generated: %s", path)
        return path
