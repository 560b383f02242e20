"""
Jellyfin integration.

- Token validation for incoming requests (GET /Users/Me)
- Startup connectivity check (GET /System/Info/Public)
- Rewriting client-supplied media URLs onto the server's own Jellyfin
  address, so the service fetches from the LAN address even when the
  client talked to a public hostname
"""

import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import httpx

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


def rewrite_source_url(url: str, jellyfin_url: Optional[str]) -> str:
    """
    Replace scheme and host of url with those of jellyfin_url.

    Path and query of the incoming URL are kept verbatim; the client
    already includes any reverse-proxy prefix in its path. Without a
    configured Jellyfin URL the input is returned unchanged.
    """
    if not jellyfin_url:
        return url

    base = urlsplit(jellyfin_url.rstrip("/"))
    incoming = urlsplit(url)

    return urlunsplit((base.scheme, base.netloc, incoming.path, incoming.query, ""))


class JellyfinClient:
    """Thin async client for the two Jellyfin endpoints the service needs."""

    def __init__(self, base_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            base_url: Jellyfin server base URL
            transport: Optional transport override (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=REQUEST_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def validate_credentials(self, auth_header: str) -> bool:
        """True if Jellyfin accepts the token carried in auth_header."""
        try:
            response = await self._client.get("/Users/Me", headers={"X-EMBY-TOKEN": auth_header})
        except httpx.HTTPError as e:
            logger.warning(f"Jellyfin credential check failed: {e}")
            return False
        return response.status_code == 200

    async def check_connection(self) -> bool:
        """Log whether the Jellyfin server is reachable."""
        try:
            response = await self._client.get("/System/Info/Public")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to connect to Jellyfin server at {self.base_url}: {e}")
            return False

        logger.info(f"Successfully connected to Jellyfin server: {self.base_url}")
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
