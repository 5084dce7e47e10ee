"""Roster export client."""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any

import httpx

from .config import RosterConfig
from .exceptions import RosterConfigError, RosterFetchError
from .models import RosterExport, RosterUpdate

logger = logging.getLogger(__name__)


class RosterClient:
    """Async client for the roster export endpoint."""

    def __init__(
        self,
        config: RosterConfig | None = None,
        export_url: str | None = None,
        post_secret: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize roster client."""
        self.config = config or RosterConfig()

        if export_url:
            self.config.export_url = export_url
        if post_secret:
            self.config.post_secret = post_secret

        if not self.config.export_url:
            raise RosterConfigError(
                "export_url is required. Provide via config or constructor."
            )

        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        logger.info("Initialized RosterClient")

    async def __aenter__(self) -> RosterClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed RosterClient")

    @property
    def client(self) -> httpx.AsyncClient:
        """Return HTTP client instance."""
        if self._client is None:
            raise RuntimeError("RosterClient must be used as async context manager")
        return self._client

    async def fetch_export(self) -> RosterExport:
        """Fetch and parse the roster export, keeping decimals exact."""
        try:
            response = await self.client.get(self.config.export_url)
        except httpx.RequestError as e:
            raise RosterFetchError(f"Export fetch failed: {e}") from e

        if response.status_code != 200:
            raise RosterFetchError(
                f"Export fetch failed: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = json.loads(response.text, parse_float=Decimal)
        except json.JSONDecodeError as e:
            raise RosterFetchError(f"Export returned non-JSON: {e}") from e

        if not data.get("ok"):
            raise RosterFetchError(f"Export error: {data.get('error') or 'unknown'}")

        export = RosterExport.from_api(data)
        logger.debug(f"Fetched roster export with {len(export.roster)} rows")
        return export

    async def post_updates(self, updates: list[RosterUpdate]) -> bool:
        """Post identity-sync updates back to the roster source."""
        if not updates:
            return True

        if not self.config.post_secret:
            raise RosterConfigError("post_secret is required to post updates")

        body = {
            "secret": self.config.post_secret,
            "updates": [u.to_api() for u in updates],
        }

        try:
            response = await self.client.post(self.config.export_url, json=body)
        except httpx.RequestError as e:
            logger.error(f"Roster POST failed: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Roster POST failed: {response.status_code} {response.text}")
            return False

        try:
            result = response.json()
        except ValueError:
            logger.error(f"Roster POST returned non-JSON: {response.text}")
            return False

        if not result.get("ok"):
            logger.error(f"Roster POST error: {result}")
            return False

        logger.info(f"Posted {len(updates)} roster updates")
        return True


def create_roster_client(
    export_url: str | None = None,
    post_secret: str | None = None,
    config: RosterConfig | None = None,
) -> RosterClient:
    """Create a RosterClient instance."""
    return RosterClient(config=config, export_url=export_url, post_secret=post_secret)
