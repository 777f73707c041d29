"""
Incident RCA - Log Tool Providers
==================================

Interface every log vendor implements so the log analyzer can fetch logs
without knowing the vendor's API.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from incident_rca.config import LOG_FETCH_LIMIT
from incident_rca.models import Integration, ParsedLogs


class LogToolProvider(ABC):
    """
    Log access for one vendor integration.

    Implementations are registered in ``log_analysis.LOG_TOOL_PROVIDERS``
    under the vendor name stored on the integration.
    """

    vendor_name: str

    def __init__(self, integration: Integration):
        self.integration = integration

    @property
    def parser_route(self) -> str:
        """Path segment of the log parser endpoint for this vendor."""
        return self.vendor_name.lower()

    @abstractmethod
    async def fetch_logs(
        self,
        start_date: str,
        end_date: str,
        query: str = "",
        limit: int = LOG_FETCH_LIMIT,
        *,
        timeout: Optional[float] = None,
    ) -> tuple[Any, ParsedLogs]:
        """
        Fetch logs between two ISO-8601 timestamps.

        ``timeout`` bounds the vendor HTTP call.

        Returns:
            The vendor-native response (sent as-is to the log parser) and
            its normalized form
        """
