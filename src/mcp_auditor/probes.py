"""
Security probes run against a single MCP server endpoint.

Every probe is independent: it owns its own HTTP client, bounds each whole
request (body included) by the shared ProbeConfig timeout, and converts transport faults into findings instead of
raising. ``Probe.execute`` wraps ``run`` into a ``ProbeOutcome`` so that any
fault a probe did not anticipate is still reported as a value rather than an
exception.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, List, Optional

import httpx
import websockets

from .config import ProbeConfig
from .models import (
    CheckStatus,
    ProbeFindings,
    Recommendation,
    SecurityCategory,
    SecurityCheck,
    ServerProtocol,
    ServerRecord,
    Severity,
    Vulnerability,
)
from .tls import CertificateInfo, fetch_certificate, host_and_port

logger = logging.getLogger(__name__)

CertificateFetcher = Callable[[str, int, float], Awaitable[Optional[CertificateInfo]]]

WELL_KNOWN_PATHS = ["/metadata", "/info", "/health", "/status", "/api", "/docs", "/swagger", "/openapi"]

SECURITY_HEADERS = {
    "strict-transport-security": "HSTS",
    "x-content-type-options": "Content Type Options",
    "x-frame-options": "Frame Options",
    "x-xss-protection": "XSS Protection",
    "content-security-policy": "Content Security Policy",
}

# Heuristic only: matches plenty of harmless bodies (e.g. docs mentioning "token").
SENSITIVE_PATTERNS = [
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"key.*=.*[a-zA-Z0-9]{20,}", re.IGNORECASE),
    re.compile(r"api.*key", re.IGNORECASE),
    re.compile(r"private.*key", re.IGNORECASE),
]

CERT_EXPIRY_WARNING = timedelta(days=30)
CORS_PROBE_ORIGIN = "https://example.com"


def contains_sensitive_info(data: Any) -> bool:
    if not isinstance(data, str):
        data = json.dumps(data, default=str)
    return any(p.search(data) for p in SENSITIVE_PATTERNS)


def http_url(endpoint: str) -> str:
    """Map ws/wss endpoints onto the http/https URL that serves their upgrade."""
    lowered = endpoint.lower()
    if lowered.startswith("wss://"):
        return "https://" + endpoint[len("wss://"):]
    if lowered.startswith("ws://"):
        return "http://" + endpoint[len("ws://"):]
    return endpoint


def _describe(error: BaseException) -> str:
    text = str(error)
    return f"{type(error).__name__}: {text}" if text else type(error).__name__


def _check(
    id: str,
    name: str,
    category: SecurityCategory,
    status: CheckStatus,
    severity: Severity,
    description: str,
    details: Optional[str] = None,
    evidence: Any = None,
) -> SecurityCheck:
    return SecurityCheck(
        id=id,
        name=name,
        category=category,
        status=status,
        severity=severity,
        description=description,
        details=details,
        evidence=evidence,
    )


def _error_check(id: str, name: str, category: SecurityCategory, severity: Severity, description: str, error: BaseException) -> SecurityCheck:
    return _check(id, name, category, CheckStatus.ERROR, severity, description, details=_describe(error))


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one probe: either findings (ok) or a diagnostic (error)."""

    probe: str
    findings: Optional[ProbeFindings] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, probe: str, findings: ProbeFindings) -> "ProbeOutcome":
        return cls(probe=probe, findings=findings)

    @classmethod
    def failure(cls, probe: str, error: BaseException) -> "ProbeOutcome":
        return cls(probe=probe, error=_describe(error))


class Probe:
    name = "probe"
    protocols: Optional[frozenset] = None  # None means every protocol

    def __init__(self, config: Optional[ProbeConfig] = None) -> None:
        self.config = config or ProbeConfig()

    def applies_to(self, server: ServerRecord) -> bool:
        return self.protocols is None or server.protocol in self.protocols

    async def run(self, server: ServerRecord) -> ProbeFindings:
        raise NotImplementedError

    async def execute(self, server: ServerRecord) -> ProbeOutcome:
        if not self.applies_to(server):
            return ProbeOutcome.success(self.name, ProbeFindings())
        try:
            findings = await self.run(server)
        except Exception as e:  # noqa: BLE001
            return ProbeOutcome.failure(self.name, e)
        return ProbeOutcome.success(self.name, findings)


class ReachabilityProbe(Probe):
    name = "reachability"

    async def _websocket_handshake(self, endpoint: str) -> None:
        async def _open_close() -> None:
            async with websockets.connect(endpoint, open_timeout=self.config.timeout, close_timeout=self.config.timeout):
                pass

        await asyncio.wait_for(_open_close(), timeout=self.config.timeout)

    async def run(self, server: ServerRecord) -> ProbeFindings:
        findings = ProbeFindings()
        try:
            if server.protocol.is_websocket:
                await self._websocket_handshake(server.endpoint)
                findings.checks.append(
                    _check(
                        "endpoint-availability-ws",
                        "WebSocket Endpoint Availability",
                        SecurityCategory.AVAILABILITY,
                        CheckStatus.PASS,
                        Severity.HIGH,
                        "WebSocket endpoint is accessible and responding",
                    )
                )
                return findings

            async with self.config.http_client() as client:
                resp = await asyncio.wait_for(client.get(server.endpoint), timeout=self.config.timeout)
            if 200 <= resp.status_code < 300:
                findings.checks.append(
                    _check(
                        "endpoint-availability-http",
                        "HTTP Endpoint Availability",
                        SecurityCategory.AVAILABILITY,
                        CheckStatus.PASS,
                        Severity.HIGH,
                        "HTTP endpoint is accessible and responding normally",
                    )
                )
            elif resp.status_code >= 400:
                findings.checks.append(
                    _check(
                        "endpoint-availability-http",
                        "HTTP Endpoint Availability",
                        SecurityCategory.AVAILABILITY,
                        CheckStatus.WARNING,
                        Severity.MEDIUM,
                        f"Endpoint returned status {resp.status_code}",
                        details=f"HTTP {resp.status_code}: {resp.reason_phrase}",
                    )
                )
        except Exception as e:  # noqa: BLE001
            findings.checks.append(
                _check(
                    "endpoint-availability",
                    "Endpoint Availability",
                    SecurityCategory.AVAILABILITY,
                    CheckStatus.FAIL,
                    Severity.CRITICAL,
                    "Endpoint is not accessible",
                    details=_describe(e),
                )
            )
            findings.vulnerabilities.append(
                Vulnerability(
                    id="endpoint-unreachable",
                    title="Endpoint Unreachable",
                    description="The MCP server endpoint cannot be reached",
                    severity=Severity.HIGH,
                    category=SecurityCategory.AVAILABILITY,
                    affected=server.endpoint,
                    remediation="Verify server is running and network connectivity",
                )
            )
        return findings


class TlsProbe(Probe):
    name = "tls"

    def __init__(self, config: Optional[ProbeConfig] = None, cert_fetcher: CertificateFetcher = fetch_certificate) -> None:
        super().__init__(config)
        self.cert_fetcher = cert_fetcher

    async def run(self, server: ServerRecord) -> ProbeFindings:
        findings = ProbeFindings()
        if not server.protocol.is_encrypted:
            findings.checks.append(
                _check(
                    "ssl-not-used",
                    "SSL/TLS Usage",
                    SecurityCategory.ENCRYPTION,
                    CheckStatus.FAIL,
                    Severity.HIGH,
                    "Server is not using SSL/TLS encryption",
                    details=f"protocol={server.protocol.value}",
                )
            )
            findings.vulnerabilities.append(
                Vulnerability(
                    id="unencrypted-communication",
                    title="Unencrypted Communication",
                    description="Server communication is not encrypted with SSL/TLS",
                    severity=Severity.HIGH,
                    category=SecurityCategory.ENCRYPTION,
                    affected=server.endpoint,
                    remediation="Enable HTTPS/WSS to encrypt communications",
                )
            )
            return findings

        try:
            hostname, port = host_and_port(server.endpoint)
            cert = await self.cert_fetcher(hostname, port, self.config.timeout)
        except Exception as e:  # noqa: BLE001
            findings.checks.append(
                _error_check(
                    "ssl-check-error",
                    "SSL Configuration Check",
                    SecurityCategory.ENCRYPTION,
                    Severity.MEDIUM,
                    "Could not verify SSL configuration",
                    e,
                )
            )
            return findings

        if cert is None:
            findings.checks.append(
                _check(
                    "ssl-certificate-valid",
                    "SSL Certificate Validity",
                    SecurityCategory.ENCRYPTION,
                    CheckStatus.FAIL,
                    Severity.HIGH,
                    "Server did not present an SSL certificate",
                )
            )
            return findings

        findings.extend(self._grade_certificate(server, cert))
        return findings

    def _grade_certificate(self, server: ServerRecord, cert: CertificateInfo) -> ProbeFindings:
        findings = ProbeFindings()
        now = datetime.now(timezone.utc)
        validity = f"Valid from: {cert.valid_from.isoformat()}, Valid to: {cert.valid_to.isoformat()}"

        if cert.is_valid_at(now):
            findings.checks.append(
                _check(
                    "ssl-certificate-valid",
                    "SSL Certificate Validity",
                    SecurityCategory.ENCRYPTION,
                    CheckStatus.PASS,
                    Severity.HIGH,
                    "SSL certificate is valid and not expired",
                    details=validity,
                )
            )
            if cert.valid_to <= now + CERT_EXPIRY_WARNING:
                findings.recommendations.append(
                    Recommendation(
                        id="certificate-expiry-warning",
                        title="SSL Certificate Expiring Soon",
                        description="SSL certificate will expire within 30 days",
                        severity=Severity.MEDIUM,
                        category=SecurityCategory.ENCRYPTION,
                        action_required=True,
                        resources=["Certificate renewal documentation"],
                    )
                )
        else:
            findings.checks.append(
                _check(
                    "ssl-certificate-valid",
                    "SSL Certificate Validity",
                    SecurityCategory.ENCRYPTION,
                    CheckStatus.FAIL,
                    Severity.CRITICAL,
                    "SSL certificate is expired or not yet valid",
                    details=validity,
                )
            )
            findings.vulnerabilities.append(
                Vulnerability(
                    id="expired-certificate",
                    title="Expired SSL Certificate",
                    description="The SSL certificate has expired or is not yet valid",
                    severity=Severity.CRITICAL,
                    category=SecurityCategory.ENCRYPTION,
                    affected=server.endpoint,
                    remediation="Renew the SSL certificate",
                )
            )

        if cert.supports_modern_tls:
            findings.checks.append(
                _check(
                    "tls-version",
                    "TLS Version Support",
                    SecurityCategory.ENCRYPTION,
                    CheckStatus.PASS,
                    Severity.MEDIUM,
                    "Server supports modern TLS versions",
                    details=f"negotiated={cert.protocol_version}",
                )
            )
        else:
            findings.checks.append(
                _check(
                    "tls-version",
                    "TLS Version Support",
                    SecurityCategory.ENCRYPTION,
                    CheckStatus.FAIL,
                    Severity.HIGH,
                    "Server does not support modern TLS versions",
                    details=f"negotiated={cert.protocol_version}",
                )
            )
            findings.vulnerabilities.append(
                Vulnerability(
                    id="outdated-tls",
                    title="Outdated TLS Version",
                    description="Server only supports outdated TLS versions",
                    severity=Severity.HIGH,
                    category=SecurityCategory.ENCRYPTION,
                    affected=server.endpoint,
                    remediation="Upgrade to support TLS 1.2 or higher",
                )
            )
        return findings


class AuthenticationProbe(Probe):
    name = "authentication"

    async def run(self, server: ServerRecord) -> ProbeFindings:
        findings = ProbeFindings()
        try:
            async with self.config.http_client() as client:
                resp = await asyncio.wait_for(client.get(http_url(server.endpoint)), timeout=self.config.timeout)
        except Exception as e:  # noqa: BLE001
            findings.checks.append(
                _error_check(
                    "authentication-check-error",
                    "Authentication Check",
                    SecurityCategory.AUTHENTICATION,
                    Severity.LOW,
                    "Could not verify authentication configuration",
                    e,
                )
            )
            return findings

        if resp.status_code in (401, 403):
            findings.checks.append(
                _check(
                    "authentication-required",
                    "Authentication Required",
                    SecurityCategory.AUTHENTICATION,
                    CheckStatus.PASS,
                    Severity.HIGH,
                    "Server properly requires authentication",
                    details=f"status={resp.status_code}",
                )
            )
        elif resp.status_code == 200:
            findings.checks.append(
                _check(
                    "authentication-required",
                    "Authentication Required",
                    SecurityCategory.AUTHENTICATION,
                    CheckStatus.WARNING,
                    Severity.MEDIUM,
                    "Server allows unauthenticated access",
                    details="status=200",
                )
            )
            findings.recommendations.append(
                Recommendation(
                    id="implement-authentication",
                    title="Implement Authentication",
                    description="Consider implementing authentication to secure the API",
                    severity=Severity.MEDIUM,
                    category=SecurityCategory.AUTHENTICATION,
                    action_required=False,
                )
            )

        if "www-authenticate" in resp.headers or "authorization" in resp.headers:
            findings.checks.append(
                _check(
                    "auth-headers-present",
                    "Authentication Headers",
                    SecurityCategory.AUTHENTICATION,
                    CheckStatus.PASS,
                    Severity.LOW,
                    "Server includes proper authentication headers",
                )
            )
        return findings


class SecurityHeadersProbe(Probe):
    name = "http-security-headers"
    protocols = frozenset({ServerProtocol.HTTP, ServerProtocol.HTTPS})

    async def run(self, server: ServerRecord) -> ProbeFindings:
        findings = ProbeFindings()
        try:
            async with self.config.http_client() as client:
                resp = await asyncio.wait_for(client.get(server.endpoint), timeout=self.config.timeout)
        except Exception as e:  # noqa: BLE001
            findings.checks.append(
                _error_check(
                    "http-security-check-error",
                    "HTTP Security Check",
                    SecurityCategory.CONFIGURATION,
                    Severity.LOW,
                    "Could not verify HTTP security configuration",
                    e,
                )
            )
            return findings

        for header, label in SECURITY_HEADERS.items():
            if resp.headers.get(header):
                findings.checks.append(
                    _check(
                        f"security-header-{header}",
                        f"{label} Header",
                        SecurityCategory.CONFIGURATION,
                        CheckStatus.PASS,
                        Severity.LOW,
                        f"{label} header is present",
                        evidence={header: resp.headers[header]},
                    )
                )
                continue
            findings.checks.append(
                _check(
                    f"security-header-{header}",
                    f"{label} Header",
                    SecurityCategory.CONFIGURATION,
                    CheckStatus.WARNING,
                    Severity.LOW,
                    f"{label} header is missing",
                )
            )
            findings.recommendations.append(
                Recommendation(
                    id=f"add-{header}-header",
                    title=f"Add {label} Header",
                    description=f"Consider adding the {header} header for enhanced security",
                    severity=Severity.LOW,
                    category=SecurityCategory.CONFIGURATION,
                    action_required=False,
                )
            )

        server_header = resp.headers.get("server")
        if server_header:
            findings.checks.append(
                _check(
                    "server-header-disclosure",
                    "Server Information Disclosure",
                    SecurityCategory.CONFIGURATION,
                    CheckStatus.WARNING,
                    Severity.LOW,
                    "Server header reveals server information",
                    details=f"Server: {server_header}",
                )
            )
            findings.recommendations.append(
                Recommendation(
                    id="hide-server-header",
                    title="Hide Server Header",
                    description="Consider hiding or minimizing server header information",
                    severity=Severity.LOW,
                    category=SecurityCategory.CONFIGURATION,
                    action_required=False,
                )
            )
        return findings


class WellKnownEndpointsProbe(Probe):
    name = "well-known-endpoints"

    def __init__(self, config: Optional[ProbeConfig] = None, paths: Optional[List[str]] = None) -> None:
        super().__init__(config)
        self.paths = list(paths) if paths is not None else list(WELL_KNOWN_PATHS)

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> Optional[httpx.Response]:
        try:
            return await client.get(url)
        except httpx.HTTPError as e:
            logger.debug("well-known path %s failed: %s", url, _describe(e))
            return None

    async def run(self, server: ServerRecord) -> ProbeFindings:
        findings = ProbeFindings()
        base_url = http_url(server.endpoint).rstrip("/")
        try:
            async with self.config.http_client() as client:
                responses = await asyncio.wait_for(
                    asyncio.gather(*(self._fetch(client, base_url + path) for path in self.paths)),
                    timeout=self.config.timeout,
                )
        except Exception as e:  # noqa: BLE001
            findings.checks.append(
                _error_check(
                    "api-endpoints-check-error",
                    "API Endpoints Check",
                    SecurityCategory.CONFIGURATION,
                    Severity.LOW,
                    "Could not verify API endpoints",
                    e,
                )
            )
            return findings

        for path, resp in zip(self.paths, responses):
            if resp is None or resp.status_code != 200:
                continue
            slug = path.replace("/", "-")
            findings.checks.append(
                _check(
                    f"endpoint{slug}",
                    f"Endpoint {path}",
                    SecurityCategory.CONFIGURATION,
                    CheckStatus.PASS,
                    Severity.INFO,
                    f"Endpoint {path} is accessible",
                )
            )
            if contains_sensitive_info(resp.text):
                findings.vulnerabilities.append(
                    Vulnerability(
                        id=f"sensitive-info{slug}",
                        title="Sensitive Information Exposure",
                        description=f"Endpoint {path} may expose sensitive information",
                        severity=Severity.MEDIUM,
                        category=SecurityCategory.DATA_PROTECTION,
                        affected=base_url + path,
                        remediation="Review and sanitize endpoint responses",
                    )
                )
        return findings


class RateLimitProbe(Probe):
    name = "rate-limit"

    async def run(self, server: ServerRecord) -> ProbeFindings:
        findings = ProbeFindings()
        rate_limit = server.metadata.rate_limit if server.metadata else None
        if rate_limit is not None:
            findings.checks.append(
                _check(
                    "rate-limit-configured",
                    "Rate Limiting",
                    SecurityCategory.AVAILABILITY,
                    CheckStatus.PASS,
                    Severity.MEDIUM,
                    "Rate limiting is configured",
                    details=f"{rate_limit.requests} requests per {rate_limit.window}",
                )
            )
            return findings
        findings.checks.append(
            _check(
                "rate-limit-configured",
                "Rate Limiting",
                SecurityCategory.AVAILABILITY,
                CheckStatus.WARNING,
                Severity.LOW,
                "Rate limiting configuration not detected",
            )
        )
        findings.recommendations.append(
            Recommendation(
                id="implement-rate-limiting",
                title="Implement Rate Limiting",
                description="Consider implementing rate limiting to prevent abuse",
                severity=Severity.LOW,
                category=SecurityCategory.AVAILABILITY,
                action_required=False,
            )
        )
        return findings


class CorsProbe(Probe):
    name = "cors"
    protocols = frozenset({ServerProtocol.HTTP, ServerProtocol.HTTPS})

    async def run(self, server: ServerRecord) -> ProbeFindings:
        findings = ProbeFindings()
        try:
            async with self.config.http_client() as client:
                resp = await asyncio.wait_for(
                    client.options(
                        server.endpoint,
                        headers={"Origin": CORS_PROBE_ORIGIN, "Access-Control-Request-Method": "GET"},
                    ),
                    timeout=self.config.timeout,
                )
        except Exception as e:  # noqa: BLE001
            findings.checks.append(
                _error_check(
                    "cors-check-error",
                    "CORS Configuration Check",
                    SecurityCategory.CONFIGURATION,
                    Severity.LOW,
                    "Could not verify CORS configuration",
                    e,
                )
            )
            return findings

        allow_origin = resp.headers.get("access-control-allow-origin")
        if allow_origin == "*":
            findings.checks.append(
                _check(
                    "cors-wildcard",
                    "CORS Configuration",
                    SecurityCategory.CONFIGURATION,
                    CheckStatus.WARNING,
                    Severity.MEDIUM,
                    "CORS allows all origins (*)",
                    details="Access-Control-Allow-Origin: *",
                )
            )
            findings.recommendations.append(
                Recommendation(
                    id="restrict-cors-origins",
                    title="Restrict CORS Origins",
                    description="Consider restricting CORS to specific trusted origins",
                    severity=Severity.MEDIUM,
                    category=SecurityCategory.CONFIGURATION,
                    action_required=False,
                )
            )
        elif allow_origin:
            findings.checks.append(
                _check(
                    "cors-configured",
                    "CORS Configuration",
                    SecurityCategory.CONFIGURATION,
                    CheckStatus.PASS,
                    Severity.LOW,
                    "CORS is properly configured with specific origins",
                    details=f"Access-Control-Allow-Origin: {allow_origin}",
                )
            )
        return findings


class ExtendedHeadersProbe(Probe):
    """Placeholder for deeper header analysis; basic coverage lives in SecurityHeadersProbe."""

    name = "extended-headers"

    async def run(self, server: ServerRecord) -> ProbeFindings:
        return ProbeFindings()


def default_probes(config: Optional[ProbeConfig] = None, cert_fetcher: CertificateFetcher = fetch_certificate) -> List[Probe]:
    config = config or ProbeConfig()
    return [
        ReachabilityProbe(config),
        TlsProbe(config, cert_fetcher=cert_fetcher),
        AuthenticationProbe(config),
        SecurityHeadersProbe(config),
        WellKnownEndpointsProbe(config),
        RateLimitProbe(config),
        CorsProbe(config),
        ExtendedHeadersProbe(config),
    ]
