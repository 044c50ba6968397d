from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARNING = "warning"
    SKIP = "skip"
    ERROR = "error"


class SecurityCategory(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    ENCRYPTION = "encryption"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    COMPLIANCE = "compliance"
    AVAILABILITY = "availability"
    DATA_PROTECTION = "data-protection"


class Grade(str, Enum):
    EXCELLENT = "A"
    GOOD = "B"
    FAIR = "C"
    POOR = "D"
    CRITICAL = "F"


class ServerProtocol(str, Enum):
    HTTP = "http"
    HTTPS = "https"
    WS = "ws"
    WSS = "wss"

    @property
    def is_encrypted(self) -> bool:
        return self in (ServerProtocol.HTTPS, ServerProtocol.WSS)

    @property
    def is_websocket(self) -> bool:
        return self in (ServerProtocol.WS, ServerProtocol.WSS)

    @classmethod
    def from_endpoint(cls, endpoint: str) -> "ServerProtocol":
        lowered = endpoint.lower()
        if lowered.startswith("wss://"):
            return cls.WSS
        if lowered.startswith("ws://"):
            return cls.WS
        if lowered.startswith("https://"):
            return cls.HTTPS
        return cls.HTTP


class AuthenticationMethod(BaseModel):
    type: str = "none"  # none | api-key | bearer | oauth2 | custom
    details: Optional[Dict[str, Any]] = None


class RateLimit(BaseModel):
    requests: int
    window: str  # e.g. "1m", "1h", "1d"


class ServerMetadata(BaseModel):
    capabilities: Optional[List[str]] = None
    authentication: Optional[AuthenticationMethod] = None
    rate_limit: Optional[RateLimit] = None
    documentation: Optional[str] = None
    repository: Optional[str] = None
    license: Optional[str] = None
    tags: Optional[List[str]] = None


class ServerRecord(BaseModel):
    """A discovered MCP server candidate. Read-only once handed to the analyzer."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    version: str = "1.0.0"
    description: Optional[str] = None
    endpoint: str
    protocol: ServerProtocol
    owner: Optional[str] = None
    last_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Optional[ServerMetadata] = None


class SecurityCheck(BaseModel):
    id: str
    name: str
    category: SecurityCategory
    status: CheckStatus
    severity: Severity
    description: str
    details: Optional[str] = None
    evidence: Optional[Any] = None


class Vulnerability(BaseModel):
    id: str
    cve: Optional[str] = None
    title: str
    description: str
    severity: Severity
    category: SecurityCategory
    affected: str
    remediation: Optional[str] = None
    references: List[str] = Field(default_factory=list)


class Recommendation(BaseModel):
    id: str
    title: str
    description: str
    severity: Severity
    category: SecurityCategory
    action_required: bool = False
    resources: List[str] = Field(default_factory=list)


class ProbeFindings(BaseModel):
    checks: List[SecurityCheck] = Field(default_factory=list)
    vulnerabilities: List[Vulnerability] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)

    def extend(self, other: "ProbeFindings") -> None:
        self.checks.extend(other.checks)
        self.vulnerabilities.extend(other.vulnerabilities)
        self.recommendations.extend(other.recommendations)

    @property
    def empty(self) -> bool:
        return not (self.checks or self.vulnerabilities or self.recommendations)


class DiscoveryResult(BaseModel):
    source: str
    servers: List[ServerRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    duration: float = 0.0


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    server_id: str
    server_name: str
    endpoint: str
    timestamp: datetime
    grade: Grade
    checks: List[SecurityCheck]
    vulnerabilities: List[Vulnerability]
    recommendations: List[Recommendation]


class AuditSummary(BaseModel):
    total_servers: int
    servers_analyzed: int
    overall_grade: Grade
    critical_vulnerabilities: int
    high_severity_issues: int
    recommendations: int


class ReportMetadata(BaseModel):
    version: str
    generated_by: str
    duration: float = 0.0
    config: Optional[Dict[str, Any]] = None


class AuditReport(BaseModel):
    id: str
    timestamp: datetime
    summary: AuditSummary
    servers: List[AnalysisResult]
    metadata: ReportMetadata

    @classmethod
    def new(
        cls,
        servers: List[AnalysisResult],
        summary: AuditSummary,
        metadata: ReportMetadata,
    ) -> "AuditReport":
        now = datetime.now(timezone.utc)
        return cls(
            id=f"audit-{int(now.timestamp() * 1000)}",
            timestamp=now,
            summary=summary,
            servers=servers,
            metadata=metadata,
        )
