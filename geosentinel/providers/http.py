"""
HTTP layer provider.

Talks to a remote feature store exposing a layer catalog and feature
collections under a common API prefix.

Endpoints (relative to ``base_url + api_path``):
    POST /catalog/find        {"query": {...}} -> {"total": n, "data": [layer, ...]}
    POST /<collection>/find   {"query": {...}} -> {"total": n, "features": [...]}

Catalog entries carry ``_id``, ``name``, ``service`` and optionally
``probeService`` (which takes precedence as the backing collection) and
``label``. The provider is ready once the catalog answers.

Example:
    >>> provider = HttpLayerProvider(config.layer_provider, user_agent="GeoSentinel/0.1")
    >>> if await provider.is_ready():
    ...     layer = await provider.find_layer("depots")
    >>> await provider.close()
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
import structlog

from geosentinel.config.models import LayerProviderConfig
from geosentinel.errors import Unavailable
from geosentinel.models.features import LayerMetadata, QueryResult
from geosentinel.providers.base import LayerProvider
from geosentinel.providers.resolver import canonical_layer_name

logger = structlog.get_logger(__name__)

CATALOG_SERVICE = "catalog"


def parse_catalog_entry(entry: Dict[str, Any]) -> LayerMetadata:
    """Convert a raw catalog entry into LayerMetadata."""
    return LayerMetadata(
        id=str(entry.get("_id") or entry.get("id")),
        name=entry["name"],
        backing_collection=entry.get("probeService") or entry["service"],
        display_name=entry.get("label"),
    )


class HttpLayerProvider(LayerProvider):
    """
    LayerProvider backed by a remote feature store.

    Attributes:
        config: Layer provider settings.
        user_agent: User-Agent header value.
    """

    def __init__(
        self,
        config: LayerProviderConfig,
        user_agent: str = "GeoSentinel/0.1",
    ) -> None:
        self.config = config
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(
            "http_layer_provider_initialized",
            base_url=config.base_url,
            api_path=config.api_path,
        )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.user_agent},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("http_layer_provider_session_closed")

    def _url(self, service: str) -> str:
        api_path = self.config.api_path.strip("/")
        prefix = f"/{api_path}" if api_path else ""
        return f"{self.config.base_url}{prefix}/{service}/find"

    async def _find(self, service: str, query: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a find request against a service.

        Raises:
            Unavailable: On transport errors, timeouts or non-2xx responses.
        """
        session = await self._ensure_session()
        url = self._url(service)

        try:
            async with session.post(url, json={"query": query}) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error(
                        "layer_provider_request_failed",
                        url=url,
                        status=response.status,
                        error=error_text,
                    )
                    raise Unavailable(
                        f"Feature store request failed with status {response.status}",
                        data={"service": service, "status": response.status},
                    )
                return await response.json()

        except aiohttp.ClientError as e:
            logger.error("layer_provider_client_error", url=url, error=str(e))
            raise Unavailable(
                f"Feature store request failed: {e}",
                data={"service": service},
            ) from e
        except asyncio.TimeoutError as e:
            logger.error(
                "layer_provider_timeout",
                url=url,
                timeout=self.config.request_timeout_seconds,
            )
            raise Unavailable(
                f"Feature store request timeout after {self.config.request_timeout_seconds}s",
                data={"service": service},
            ) from e

    async def is_ready(self) -> bool:
        try:
            await self._find(CATALOG_SERVICE, {"$limit": 0})
        except Unavailable:
            return False
        return True

    async def find_layer(self, name: str) -> Optional[LayerMetadata]:
        query = {
            "$and": [
                {"$or": [{"service": {"$exists": True}}, {"probeService": {"$exists": True}}]},
                {"$or": [{"name": canonical_layer_name(name)}, {"name": name}]},
            ]
        }
        body = await self._find(CATALOG_SERVICE, query)
        entries = body.get("data") or []
        if not entries:
            return None
        return parse_catalog_entry(entries[0])

    async def query_features(
        self,
        collection: str,
        query: Dict[str, Any],
    ) -> QueryResult:
        body = await self._find(collection, query)
        features = body.get("features") or []
        total = body.get("total", len(features))
        logger.debug(
            "layer_provider_query",
            collection=collection,
            total=total,
            returned=len(features),
        )
        return QueryResult(total=total, features=features)
