from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Dict, Iterable, List, Literal, Optional, Union

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_CONCURRENT = 5
DEFAULT_REGISTRY_URL = "https://registry.modelcontextprotocol.org/api/servers"
DEFAULT_LOCAL_PATTERNS = ["**/mcp.config.json", "**/mcp.yaml", "**/mcp.yml"]
VERSION = "1.0.0"
USER_AGENT = f"MCP-Security-Auditor/{VERSION}"


class ProbeConfig(BaseModel):
    """Read-only settings shared by every probe for the lifetime of an analysis."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    timeout: float = DEFAULT_TIMEOUT
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    # Injected for tests (httpx.MockTransport / httpx.ASGITransport)
    transport: Optional[httpx.AsyncBaseTransport] = Field(default=None, exclude=True)

    def http_client(self, follow_redirects: bool = True) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=follow_redirects,
            max_redirects=self.max_redirects,
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": USER_AGENT},
            transport=self.transport,
        )


class ApiAuth(BaseModel):
    type: Literal["bearer", "oauth2-client-credentials"]
    token: Optional[str] = None
    token_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    scope: Optional[str] = None


class _SourceBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True


class LocalSource(_SourceBase):
    type: Literal["local"] = "local"
    paths: List[str] = Field(default_factory=lambda: ["."])
    patterns: List[str] = Field(default_factory=lambda: list(DEFAULT_LOCAL_PATTERNS))


class RegistrySource(_SourceBase):
    type: Literal["registry"] = "registry"
    url: str = DEFAULT_REGISTRY_URL


class ApiSource(_SourceBase):
    type: Literal["api"] = "api"
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    auth: Optional[ApiAuth] = None


class VSCodeSource(_SourceBase):
    type: Literal["vscode"] = "vscode"
    settings_paths: Optional[List[str]] = Field(default=None, alias="settingsPaths")


DiscoverySource = Annotated[
    Union[LocalSource, RegistrySource, ApiSource, VSCodeSource],
    Field(discriminator="type"),
]


class DiscoveryConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sources: List[DiscoverySource] = Field(default_factory=list)
    timeout: float = DEFAULT_TIMEOUT
    max_concurrent: int = Field(default=DEFAULT_MAX_CONCURRENT, alias="maxConcurrent", ge=1)
    exclude_patterns: List[str] = Field(default_factory=list, alias="excludePatterns")

    @field_validator("sources", mode="before")
    @classmethod
    def _flatten_source_config(cls, value: Any) -> Any:
        # Accept {"type": ..., "enabled": ..., "config": {...}} entries
        if not isinstance(value, list):
            return value
        flattened = []
        for item in value:
            if isinstance(item, dict) and isinstance(item.get("config"), dict):
                merged = {k: v for k, v in item.items() if k != "config"}
                merged.update(item["config"])
                item = merged
            flattened.append(item)
        return flattened

    @field_validator("timeout")
    @classmethod
    def _timeout_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be positive")
        # Older config files store milliseconds
        if value > 1000:
            return value / 1000.0
        return value

    @property
    def enabled_sources(self) -> List[DiscoverySource]:
        return [s for s in self.sources if s.enabled]

    def probe_config(self) -> ProbeConfig:
        return ProbeConfig(timeout=self.timeout)


class ReportConfig(BaseModel):
    format: Literal["json", "html", "markdown"] = "html"
    output_path: Path
    include_details: bool = True
    include_recommendations: bool = True


def sources_for(kinds: Iterable[str]) -> List[DiscoverySource]:
    sources: List[DiscoverySource] = []
    for kind in kinds:
        if kind == "local":
            sources.append(LocalSource(patterns=["**/mcp.config.json", "**/mcp.yaml", "**/package.json"]))
        elif kind == "vscode":
            sources.append(VSCodeSource())
        elif kind == "registry":
            sources.append(RegistrySource())
        elif kind == "api":
            # Needs a real URL before it can be enabled
            sources.append(ApiSource(url="https://api.example.com/mcp/servers", enabled=False))
        else:
            raise ConfigError(f"Unknown discovery source: {kind}")
    return sources


def default_config() -> DiscoveryConfig:
    return DiscoveryConfig(
        sources=sources_for(["local", "vscode"]),
        timeout=DEFAULT_TIMEOUT,
        max_concurrent=DEFAULT_MAX_CONCURRENT,
        exclude_patterns=["**/node_modules/**", "**/.*"],
    )


def _parse_text(path: Path, text: str) -> Any:
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text)
    return json.loads(text)


def load_config(path: Optional[Path] = None) -> DiscoveryConfig:
    if path is None:
        return default_config()
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    try:
        raw = _parse_text(path, path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not parse configuration {path}: {e}", details={"path": str(path)}) from e
    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration {path} must contain an object")
    try:
        return DiscoveryConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration {path}: {e}", details={"path": str(path)}) from e


def save_config(config: DiscoveryConfig, path: Path) -> Path:
    data = config.model_dump(mode="json", exclude_none=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".yaml", ".yml"):
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    else:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path
