from __future__ import annotations

import asyncio
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple
from urllib.parse import urlparse

from cryptography import x509

# Ordered oldest to newest, as reported by SSLObject.version()
TLS_VERSIONS = ("SSLv2", "SSLv3", "TLSv1", "TLSv1.1", "TLSv1.2", "TLSv1.3")
MINIMUM_TLS_VERSION = "TLSv1.2"


@dataclass(frozen=True)
class CertificateInfo:
    valid_from: datetime
    valid_to: datetime
    protocol_version: Optional[str] = None
    subject: Optional[str] = None
    issuer: Optional[str] = None

    def is_valid_at(self, moment: datetime) -> bool:
        return self.valid_from <= moment <= self.valid_to

    @property
    def supports_modern_tls(self) -> bool:
        if self.protocol_version not in TLS_VERSIONS:
            return False
        return TLS_VERSIONS.index(self.protocol_version) >= TLS_VERSIONS.index(MINIMUM_TLS_VERSION)


def host_and_port(endpoint: str) -> Tuple[str, int]:
    """Split an endpoint into the (hostname, port) pair used for the TLS handshake."""
    parsed = urlparse(endpoint)
    if not parsed.hostname:
        raise ValueError(f"Endpoint has no hostname: {endpoint!r}")
    # ValueError for out-of-range ports surfaces as a probe error
    return parsed.hostname, parsed.port or 443


def parse_certificate(der_bytes: bytes, protocol_version: Optional[str] = None) -> CertificateInfo:
    cert = x509.load_der_x509_certificate(der_bytes)
    not_before = cert.not_valid_before_utc if hasattr(cert, "not_valid_before_utc") else cert.not_valid_before.replace(tzinfo=timezone.utc)
    not_after = cert.not_valid_after_utc if hasattr(cert, "not_valid_after_utc") else cert.not_valid_after.replace(tzinfo=timezone.utc)
    return CertificateInfo(
        valid_from=not_before,
        valid_to=not_after,
        protocol_version=protocol_version,
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
    )


async def fetch_certificate(hostname: str, port: int, timeout: float) -> Optional[CertificateInfo]:
    """Open a TLS connection and read the peer certificate and negotiated protocol.

    Chain and hostname verification are off, so expired or self-signed
    certificates are still returned. Legacy protocols and ciphers are allowed
    so that a TLSv1/TLSv1.1-only peer still completes the handshake and its
    version can be graded. Returns None when the peer presents no certificate.
    """
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.minimum_version = ssl.TLSVersion.MINIMUM_SUPPORTED
    context.set_ciphers("DEFAULT:@SECLEVEL=0")

    _reader, writer = await asyncio.wait_for(
        asyncio.open_connection(hostname, port, ssl=context, server_hostname=hostname),
        timeout=timeout,
    )
    try:
        ssl_object = writer.get_extra_info("ssl_object")
        der = ssl_object.getpeercert(binary_form=True) if ssl_object is not None else None
        version = ssl_object.version() if ssl_object is not None else None
    finally:
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
        except (OSError, ssl.SSLError, asyncio.TimeoutError):
            pass
    if not der:
        return None
    return parse_certificate(der, version)
