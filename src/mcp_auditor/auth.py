from __future__ import annotations

from typing import Dict, Optional

import httpx

from .config import ApiAuth
from .errors import DiscoveryError


async def build_auth_headers(auth: Optional[ApiAuth], client: httpx.AsyncClient) -> Dict[str, str]:
    """Headers authenticating discovery requests against a server directory API."""
    if auth is None:
        return {}
    if auth.type == "bearer":
        if not auth.token:
            raise DiscoveryError("auth.token required for auth type bearer")
        return {"Authorization": f"Bearer {auth.token}"}
    if auth.type == "oauth2-client-credentials":
        if not (auth.token_url and auth.client_id and auth.client_secret):
            raise DiscoveryError("auth.token_url, auth.client_id, auth.client_secret required for oauth2-client-credentials")
        data = {
            "grant_type": "client_credentials",
            "client_id": auth.client_id,
            "client_secret": auth.client_secret,
        }
        if auth.scope:
            data["scope"] = auth.scope
        resp = await client.post(auth.token_url, data=data)
        resp.raise_for_status()
        tok = resp.json().get("access_token")
        if not tok:
            raise DiscoveryError("No access_token in OAuth2 response")
        return {"Authorization": f"Bearer {tok}"}
    raise DiscoveryError(f"Unsupported auth type: {auth.type}")
