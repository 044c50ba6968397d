"""
Discovery of MCP servers from local files, editor settings and remote directories.

Each source kind is handled independently; a source that fails contributes an
empty DiscoveryResult carrying the error text instead of aborting discovery.
Raw, untyped server descriptions only exist inside ``normalize_server_data``,
which turns them into ServerRecord values.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import time
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

import httpx
import yaml
from pydantic import BaseModel, ValidationError

from .auth import build_auth_headers
from .config import (
    USER_AGENT,
    ApiSource,
    DiscoveryConfig,
    DiscoverySource,
    LocalSource,
    RegistrySource,
    VSCodeSource,
)
from .errors import DiscoveryError
from .models import (
    AuthenticationMethod,
    DiscoveryResult,
    RateLimit,
    ServerMetadata,
    ServerProtocol,
    ServerRecord,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

VSCODE_SERVER_KEYS = ("mcp.servers", "modelContextProtocol.servers")
PACKAGE_MCP_KEYS = ("mcp", "modelContextProtocol")


def generate_server_id(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", name.lower())
    return f"{slug}-{int(time.time() * 1000)}"


def _optional_model(model: Type[M], value: Any) -> Optional[M]:
    if value is None:
        return None
    try:
        return model.model_validate(value)
    except ValidationError as e:
        logger.debug("Ignoring malformed %s: %s", model.__name__, e)
        return None


def _link(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("url")
    return value if isinstance(value, str) else None


def _string_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v) for v in value]


def normalize_server_data(data: Dict[str, Any], source: str) -> ServerRecord:
    """Turn one raw server description from any source into a ServerRecord."""
    endpoint = data.get("endpoint") or data.get("url") or data.get("server") or ""
    if not isinstance(endpoint, str):
        endpoint = ""
    raw_name = data.get("name") or data.get("title")
    name = raw_name or "Unknown Server"
    owner = data.get("owner") or data.get("author")

    authentication = data.get("authentication")
    if isinstance(authentication, str):
        authentication = {"type": authentication}
    metadata = ServerMetadata(
        capabilities=_string_list(data.get("capabilities")),
        authentication=_optional_model(AuthenticationMethod, authentication),
        rate_limit=_optional_model(RateLimit, data.get("rateLimit", data.get("rate_limit"))),
        documentation=_link(data.get("documentation")),
        repository=_link(data.get("repository")),
        license=data.get("license") if isinstance(data.get("license"), str) else None,
        tags=_string_list(data.get("tags")),
    )
    logger.debug("Normalized %s server %s from %s", source, name, endpoint or "<no endpoint>")
    return ServerRecord(
        id=str(data.get("id") or generate_server_id(str(raw_name or endpoint))),
        name=str(name),
        version=str(data.get("version") or "1.0.0"),
        description=data.get("description") if isinstance(data.get("description"), str) else None,
        endpoint=endpoint,
        protocol=ServerProtocol.from_endpoint(endpoint),
        owner=owner if isinstance(owner, str) else None,
        metadata=metadata,
    )


def _records_from(raw: Any, source: str) -> List[ServerRecord]:
    if isinstance(raw, dict) and isinstance(raw.get("servers"), list):
        raw = raw["servers"]
    if isinstance(raw, dict):
        return [normalize_server_data(raw, source)]
    if isinstance(raw, list):
        return [normalize_server_data(item, source) for item in raw if isinstance(item, dict)]
    return []


def parse_config_file(path: Path) -> List[ServerRecord]:
    text = path.read_text(encoding="utf-8")
    suffix = path.suffix.lower()
    if suffix == ".json":
        raw = json.loads(text)
    elif suffix in (".yaml", ".yml"):
        raw = yaml.safe_load(text)
    else:
        return []
    return _records_from(raw, "local")


def parse_package_json(path: Path) -> Optional[ServerRecord]:
    package = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(package, dict):
        return None
    mcp_config = next((package[k] for k in PACKAGE_MCP_KEYS if isinstance(package.get(k), dict)), None)
    if mcp_config is None:
        return None
    return normalize_server_data(
        {
            **mcp_config,
            "name": package.get("name"),
            "version": package.get("version"),
            "description": package.get("description"),
            "repository": _link(package.get("repository")),
        },
        "local",
    )


def is_excluded(path: Path, root: Path, patterns: Iterable[str]) -> bool:
    try:
        rel = "./" + path.relative_to(root).as_posix()
    except ValueError:
        rel = path.as_posix()
    return any(fnmatch(rel, pattern) or fnmatch(rel[2:], pattern) for pattern in patterns)


def default_vscode_settings_paths() -> List[Path]:
    paths: List[Path] = []
    appdata = os.environ.get("APPDATA")
    if appdata:
        paths.append(Path(appdata) / "Code" / "User" / "settings.json")
    paths.append(Path.home() / ".vscode" / "settings.json")
    paths.append(Path.cwd() / ".vscode" / "settings.json")
    return paths


def _chunks(items: Sequence[DiscoverySource], size: int) -> List[Sequence[DiscoverySource]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class DiscoveryService:
    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

    async def discover_servers(self, config: DiscoveryConfig) -> List[DiscoveryResult]:
        results: List[DiscoveryResult] = []
        for batch in _chunks(config.enabled_sources, config.max_concurrent):
            outcomes = await asyncio.gather(
                *(self.discover_from_source(source, config) for source in batch),
                return_exceptions=True,
            )
            for source, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    self.logger.error("Discovery failed for %s: %s", source.type, outcome)
                    results.append(DiscoveryResult(source=source.type, errors=[str(outcome) or type(outcome).__name__]))
                else:
                    results.append(outcome)
        return results

    async def discover_from_source(self, source: DiscoverySource, config: DiscoveryConfig) -> DiscoveryResult:
        started = time.monotonic()
        try:
            if isinstance(source, LocalSource):
                servers = await asyncio.to_thread(self.discover_local, source, config.exclude_patterns)
            elif isinstance(source, RegistrySource):
                servers = await self.discover_registry(source, config.timeout)
            elif isinstance(source, ApiSource):
                servers = await self.discover_api(source, config.timeout)
            elif isinstance(source, VSCodeSource):
                servers = await asyncio.to_thread(self.discover_vscode, source)
            else:
                raise DiscoveryError(f"Unknown source type: {getattr(source, 'type', source)}")
        except Exception as e:  # noqa: BLE001
            self.logger.warning("Discovery source %s failed: %s", source.type, e)
            return DiscoveryResult(source=source.type, errors=[str(e) or type(e).__name__], duration=time.monotonic() - started)
        self.logger.info("Discovered %d servers from %s", len(servers), source.type)
        return DiscoveryResult(source=source.type, servers=servers, duration=time.monotonic() - started)

    def discover_local(self, source: LocalSource, exclude_patterns: Sequence[str] = ()) -> List[ServerRecord]:
        servers: List[ServerRecord] = []
        seen: set[Path] = set()
        roots = [Path(p).resolve() for p in source.paths] or [Path.cwd()]
        for root in roots:
            for pattern in source.patterns:
                try:
                    matches = sorted(root.glob(pattern))
                except (OSError, ValueError) as e:
                    self.logger.warning("Failed to search in %s with pattern %s: %s", root, pattern, e)
                    continue
                for file in matches:
                    if file in seen or not file.is_file() or is_excluded(file, root, exclude_patterns):
                        continue
                    seen.add(file)
                    try:
                        if file.name == "package.json":
                            server = parse_package_json(file)
                            servers.extend([server] if server else [])
                        else:
                            servers.extend(parse_config_file(file))
                    except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
                        self.logger.warning("Failed to parse config file %s: %s", file, e)

        # package.json files with an embedded MCP block are always considered
        root = roots[0]
        for file in sorted(root.glob("**/package.json")):
            if file in seen or is_excluded(file, root, exclude_patterns):
                continue
            seen.add(file)
            try:
                server = parse_package_json(file)
            except (OSError, ValueError, ValidationError) as e:
                self.logger.debug("Skipping package.json %s: %s", file, e)
                continue
            if server:
                servers.append(server)
        return servers

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            transport=self.transport,
        )

    async def discover_registry(self, source: RegistrySource, timeout: float) -> List[ServerRecord]:
        try:
            async with self._client(timeout) as client:
                resp = await client.get(source.url)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Registry request failed: {e}") from e
        if not isinstance(data, list):
            raise DiscoveryError("Registry response is not an array")
        return [normalize_server_data(item, "registry") for item in data if isinstance(item, dict)]

    async def discover_api(self, source: ApiSource, timeout: float) -> List[ServerRecord]:
        if not source.url:
            raise DiscoveryError("API URL is required for API discovery")
        try:
            async with self._client(timeout) as client:
                headers = {**source.headers, **(await build_auth_headers(source.auth, client))}
                resp = await client.get(source.url, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise DiscoveryError(f"API request failed: {e}") from e
        servers = data if isinstance(data, list) else (data.get("servers") if isinstance(data, dict) else None)
        if not isinstance(servers, list):
            raise DiscoveryError("API response does not contain a servers array")
        return [normalize_server_data(item, "api") for item in servers if isinstance(item, dict)]

    def discover_vscode(self, source: VSCodeSource) -> List[ServerRecord]:
        servers: List[ServerRecord] = []
        paths = [Path(p).expanduser() for p in source.settings_paths] if source.settings_paths else default_vscode_settings_paths()
        for settings_path in paths:
            if not settings_path.is_file():
                continue
            try:
                settings = json.loads(settings_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                self.logger.debug("Skipping unreadable settings %s: %s", settings_path, e)
                continue
            if not isinstance(settings, dict):
                continue
            entries = next((settings[k] for k in VSCODE_SERVER_KEYS if isinstance(settings.get(k), list)), [])
            servers.extend(normalize_server_data(item, "vscode") for item in entries if isinstance(item, dict))
        return servers


def flatten_servers(results: Iterable[DiscoveryResult]) -> List[ServerRecord]:
    return [server for result in results for server in result.servers]
