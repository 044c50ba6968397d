from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from .config import ProbeConfig
from .errors import AnalysisError
from .models import AnalysisResult, ServerRecord
from .runner import ProbeRunner
from .scoring import calculate_grade

SUPPORTED_SCHEMES = ("http", "https", "ws", "wss")


def validate_server(server: ServerRecord) -> None:
    """Raise ValueError if the record cannot be probed at all."""
    if not server.endpoint or not server.endpoint.strip():
        raise ValueError("server endpoint is empty")
    parsed = urlparse(server.endpoint)
    if parsed.scheme.lower() not in SUPPORTED_SCHEMES:
        raise ValueError(f"unsupported endpoint scheme {parsed.scheme!r}")
    if not parsed.hostname:
        raise ValueError(f"endpoint {server.endpoint!r} has no host")


class SecurityAnalyzer:
    def __init__(
        self,
        runner: Optional[ProbeRunner] = None,
        config: Optional[ProbeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.runner = runner or ProbeRunner(config=config, logger=self.logger)

    async def analyze(self, server: ServerRecord) -> AnalysisResult:
        """Probe one server and grade the result.

        Probe failures are absorbed into the findings; only a structurally
        invalid record raises, as AnalysisError.
        """
        try:
            validate_server(server)
            timestamp = datetime.now(timezone.utc)
            findings = await self.runner.run_all(server)
        except Exception as e:
            raise AnalysisError(f"Failed to analyze server {server.name}: {e}", server=server, cause=e) from e

        return AnalysisResult(
            server_id=server.id,
            server_name=server.name,
            endpoint=server.endpoint,
            timestamp=timestamp,
            grade=calculate_grade(findings.checks),
            checks=findings.checks,
            vulnerabilities=findings.vulnerabilities,
            recommendations=findings.recommendations,
        )
