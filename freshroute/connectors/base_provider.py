"""FRESHROUTE — Abstract Upstream Provider."""

from abc import ABC, abstractmethod
from datetime import date
from typing import List

from freshroute.models.payload_models import LineItem


class UpstreamProvider(ABC):
    """Live source of raw line items for one advertising platform.

    Implementations own transport, auth, retries and timeouts, and raise
    ``UpstreamError`` for any failure. The router never sees wire formats.
    """

    @abstractmethod
    async def fetch_line_items(
        self, entity_id: str, start: date, end: date
    ) -> List[LineItem]:
        """Fetch per-campaign line items aggregated over [start, end].

        Args:
            entity_id: The entity (client/account) whose data is requested.
            start: First day of the window, inclusive.
            end: Last day of the window, inclusive.

        Returns:
            Line items with volumes and conversion sub-metrics populated.
        """
        ...

    @abstractmethod
    async def validate_credential(self, entity_id: str) -> bool:
        """Check whether the entity's upstream credential is usable."""
        ...
