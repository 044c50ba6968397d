from __future__ import annotations

from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ServerRecord


class AuditorError(Exception):
    """Base error carrying a machine-readable code and optional details."""

    code = "AUDITOR_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class AnalysisError(AuditorError):
    code = "SECURITY_ANALYSIS_ERROR"

    def __init__(self, message: str, server: "ServerRecord", cause: Optional[BaseException] = None) -> None:
        super().__init__(message, details={"server": server.id, "cause": repr(cause) if cause else None})
        self.server = server
        self.cause = cause


class DiscoveryError(AuditorError):
    code = "DISCOVERY_ERROR"


class ConfigError(AuditorError):
    code = "CONFIG_ERROR"


class ReportError(AuditorError):
    code = "REPORT_ERROR"
