from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import httpx
import pytest

from mcp_auditor.config import ProbeConfig
from mcp_auditor.models import ServerProtocol, ServerRecord
from mcp_auditor.tls import CertificateInfo


@pytest.fixture
def make_server() -> Callable[..., ServerRecord]:
    def _make(endpoint: str, name: str = "test-server", **kwargs: Any) -> ServerRecord:
        return ServerRecord(
            id=kwargs.pop("id", f"{name}-1"),
            name=name,
            endpoint=endpoint,
            protocol=ServerProtocol.from_endpoint(endpoint),
            **kwargs,
        )

    return _make


@pytest.fixture
def mock_config() -> Callable[[Callable[[httpx.Request], httpx.Response]], ProbeConfig]:
    """ProbeConfig whose HTTP clients are served by an in-process handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> ProbeConfig:
        return ProbeConfig(timeout=2.0, transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def certificate() -> Callable[..., CertificateInfo]:
    def _make(
        valid_for: timedelta = timedelta(days=200),
        issued: timedelta = timedelta(days=30),
        protocol_version: Optional[str] = "TLSv1.3",
    ) -> CertificateInfo:
        now = datetime.now(timezone.utc)
        return CertificateInfo(valid_from=now - issued, valid_to=now + valid_for, protocol_version=protocol_version)

    return _make
