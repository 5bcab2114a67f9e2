"""FRESHROUTE — Meta Insights Endpoint.

Raw campaign-level insight rows for one ad account and window; the
transformer turns them into line items.
"""

import json
from typing import Any, Dict, List

from freshroute.connectors.meta.client import META_BASE, MetaClient
from freshroute.core.logging import get_logger

logger = get_logger("meta.endpoints")

INSIGHT_FIELDS = ",".join(
    [
        "campaign_id",
        "campaign_name",
        "spend",
        "impressions",
        "clicks",
        "reach",
        "ctr",
        "cpc",
        "conversions",
        "actions",
        "action_values",
    ]
)
PAGE_SIZE = 500


class MetaEndpoints:
    def __init__(self, client: MetaClient):
        self.client = client

    async def fetch_campaign_insights(
        self,
        date_start: str,
        date_stop: str,
        time_increment: str = "all_days",
    ) -> List[Dict[str, Any]]:
        """One row per campaign summed over [date_start, date_stop] by default."""
        rows = await self.client.get_all_pages(
            f"{META_BASE}/{self.client.ad_account_id}/insights",
            {
                "level": "campaign",
                "fields": INSIGHT_FIELDS,
                "time_range": json.dumps({"since": date_start, "until": date_stop}),
                "time_increment": time_increment,
                "limit": PAGE_SIZE,
            },
        )
        logger.info(
            f"Fetched {len(rows)} campaign insight rows for {date_start} → {date_stop}"
        )
        return rows
