"""FRESHROUTE — Meta Upstream Provider.

Resolves an entity to its ad account credential and exposes Meta insights
through the UpstreamProvider interface. Every Meta failure leaves here as
an UpstreamError.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from freshroute.config import settings
from freshroute.connectors.base_provider import UpstreamProvider
from freshroute.connectors.meta.client import MetaAPIError, MetaClient
from freshroute.connectors.meta.endpoints import MetaEndpoints
from freshroute.connectors.meta.transformer import transform_insights
from freshroute.core.errors import UpstreamError
from freshroute.core.logging import get_logger
from freshroute.models.enums import Platform
from freshroute.models.payload_models import LineItem
from freshroute.stores.storage import StorageBackend

logger = get_logger("meta.provider")


def _to_upstream_error(e: MetaAPIError) -> UpstreamError:
    if e.is_auth_error:
        kind = "credential_invalid"
    elif e.is_rate_limited:
        kind = "rate_limited"
    elif e.status_code == 0:
        kind = "transport"
    else:
        kind = "upstream"
    return UpstreamError(str(e), kind=kind, status_code=e.status_code)


class MetaProvider(UpstreamProvider):
    """Meta Marketing API as a live line-item source."""

    def __init__(
        self,
        storage: StorageBackend,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storage = storage
        self._transport = transport

    def _client_for(self, entity_id: str) -> MetaClient:
        account = self.storage.get_entity_account(entity_id, Platform.META.value)
        if account and account.ad_account_id:
            return MetaClient(
                access_token=account.access_token or None,
                ad_account_id=account.ad_account_id,
                transport=self._transport,
            )
        if settings.meta_ad_account_id and entity_id == settings.default_entity_id:
            return MetaClient(transport=self._transport)
        raise UpstreamError(
            f"No Meta ad account configured for entity {entity_id}",
            kind="credential_invalid",
        )

    async def fetch_line_items(
        self, entity_id: str, start: date, end: date
    ) -> List[LineItem]:
        client = self._client_for(entity_id)
        try:
            endpoints = MetaEndpoints(client)
            raw = await endpoints.fetch_campaign_insights(
                start.isoformat(), end.isoformat()
            )
        except MetaAPIError as e:
            logger.error(
                f"Meta insights fetch failed for {entity_id}: {e}",
                extra={"entity_id": entity_id, "status_code": e.status_code},
            )
            raise _to_upstream_error(e) from e
        finally:
            await client.close()
        return transform_insights(raw)

    async def describe_credential(self, entity_id: str) -> Dict[str, Any]:
        """Token metadata from Graph API ``debug_token``: validity, expiry, scopes."""
        client = self._client_for(entity_id)
        try:
            return await client.validate_token()
        except MetaAPIError as e:
            raise _to_upstream_error(e) from e
        finally:
            await client.close()

    async def validate_credential(self, entity_id: str) -> bool:
        result = await self.describe_credential(entity_id)
        return bool(result["valid"])
