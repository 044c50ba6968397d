"""Discover MCP servers and grade their security posture."""

from .analyzer import SecurityAnalyzer
from .auditor import MCPSecurityAuditor, audit_all
from .config import VERSION, DiscoveryConfig, ProbeConfig, ReportConfig, load_config
from .errors import AnalysisError, AuditorError, ConfigError, DiscoveryError, ReportError
from .models import AnalysisResult, Grade, ServerRecord
from .runner import ProbeRunner
from .scoring import calculate_grade

__version__ = VERSION

__all__ = [
    "AnalysisError",
    "AnalysisResult",
    "AuditorError",
    "ConfigError",
    "DiscoveryConfig",
    "DiscoveryError",
    "Grade",
    "MCPSecurityAuditor",
    "ProbeConfig",
    "ProbeRunner",
    "ReportConfig",
    "ReportError",
    "SecurityAnalyzer",
    "ServerRecord",
    "audit_all",
    "calculate_grade",
    "load_config",
]
