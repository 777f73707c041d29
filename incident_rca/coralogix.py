"""
Incident RCA - Coralogix Integration
=====================================

Client for the Coralogix DataPrime query API and the log tool provider built
on it.

RESPONSE FORMAT:
    The query endpoint streams newline-delimited JSON. Result lines look like

        {"result": {"results": [{"metadata": [...], "labels": [...],
                                 "userData": "{\"level\": \"ERROR\", ...}"}]}}

    ``userData`` is itself a JSON-encoded string holding the log row, so rows
    are decoded in two steps: the transport line, then the inner record.
"""

import json
import logging
from typing import Any, Optional

import httpx

from incident_rca.config import LOG_FETCH_LIMIT
from incident_rca.log_tools import LogToolProvider
from incident_rca.models import Integration, ParsedLogs
from incident_rca.timeframes import get_timestamp
from incident_rca.utils import decode_user_data, get_keys, http_timeout

LOGGER = logging.getLogger(__name__)

DATAPRIME_SYNTAX = "QUERY_SYNTAX_DATAPRIME"
DEFAULT_TIER = "TIER_FREQUENT_SEARCH"

REGION_DOMAINS = {
    "EU1": "coralogix.com",
    "EU2": "eu2.coralogix.com",
    "US1": "coralogix.us",
    "US2": "cx498.coralogix.com",
    "AP1": "coralogix.in",
    "AP2": "coralogixsg.com",
}


# =============================================================================
# CLIENT
# =============================================================================

class CoralogixClient:
    """Async client for the DataPrime query endpoint of one region."""

    def __init__(
        self,
        logs_key: str,
        region: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if region not in REGION_DOMAINS:
            raise ValueError(f"Unknown Coralogix region: {region}")
        self.logs_key = logs_key
        self.region = region
        self.transport = transport

    @property
    def query_url(self) -> str:
        return f"https://ng-api-http.{REGION_DOMAINS[self.region]}/api/v1/dataprime/query"

    async def get_raw_logs(
        self,
        query: str,
        start_date: str,
        end_date: str,
        syntax: str = DATAPRIME_SYNTAX,
        timeout: Optional[float] = None,
    ) -> list[dict]:
        """
        Run a query and return the decoded response lines.

        ``timeout`` bounds the HTTP exchange (None: HTTP_TIMEOUT_SECONDS).

        Raises:
            httpx.HTTPStatusError: On a non-2xx response
        """
        payload = {
            "query": query,
            "metadata": {
                "syntax": syntax,
                "startDate": start_date,
                "endDate": end_date,
                "tier": DEFAULT_TIER,
            },
        }
        async with httpx.AsyncClient(
            timeout=http_timeout(timeout), transport=self.transport
        ) as client:
            response = await client.post(
                self.query_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.logs_key}"},
            )
            response.raise_for_status()

        return [json.loads(line) for line in response.text.splitlines() if line.strip()]

    @staticmethod
    def parse_result(raw_logs: list[dict]) -> ParsedLogs:
        """Collect the result rows of every response line."""
        rows = []
        for line in raw_logs:
            result = line.get("result") or {}
            for item in result.get("results", []):
                rows.append(decode_user_data(item.get("userData", "")))
        return ParsedLogs(results=rows)

    async def get_logs(self, query: str, start_date: str, end_date: str) -> ParsedLogs:
        raw_logs = await self.get_raw_logs(query, start_date, end_date)
        return self.parse_result(raw_logs)


# =============================================================================
# LOG TOOL PROVIDER
# =============================================================================

def build_query(query: str = "", limit: int = LOG_FETCH_LIMIT) -> str:
    """
    Build a DataPrime query over all logs.

    Example:
        build_query("$d.status == 500", 100)
        # "source logs | filter $d.status == 500 | limit 100"
    """
    parts = ["source logs"]
    if query:
        parts.append(f"filter {query}")
    parts.append(f"limit {limit}")
    return " | ".join(parts)


class CoralogixLogProvider(LogToolProvider):
    vendor_name = "Coralogix"

    def __init__(
        self,
        integration: Integration,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(integration)
        self.client = CoralogixClient(
            integration.credentials["logsKey"],
            integration.metadata["region"],
            transport=transport,
        )

    async def fetch_logs(
        self,
        start_date: str,
        end_date: str,
        query: str = "",
        limit: int = LOG_FETCH_LIMIT,
        *,
        timeout: Optional[float] = None,
    ) -> tuple[list[dict], ParsedLogs]:
        raw_logs = await self.client.get_raw_logs(
            build_query(query, limit), start_date, end_date, timeout=timeout
        )
        parsed_logs = self.client.parse_result(raw_logs)
        LOGGER.debug("fetched %d Coralogix log rows", len(parsed_logs.results))
        return raw_logs, parsed_logs

    # -------------------------------------------------------------------------
    # Exploration helpers (last 7 days)
    # -------------------------------------------------------------------------

    async def _query_last_week(self, query: str) -> ParsedLogs:
        return await self.client.get_logs(
            query,
            get_timestamp(7, "days"),
            get_timestamp(),
        )

    async def get_log_sample(self, amount: int = 5) -> list[Any]:
        parsed = await self._query_last_week(f"source logs | limit {amount}")
        return parsed.rows()

    async def get_pretty_log_sample(self, amount: int = 5) -> str:
        """Sample rows as "key: value" lines, separated by a dashed rule."""
        blocks = []
        for row in await self.get_log_sample(amount):
            if isinstance(row, dict):
                blocks.append("\n".join(f"{key}: {value}" for key, value in row.items()))
            else:
                blocks.append(str(row))
        return "\n\n--------------------------------------\n\n".join(blocks)

    async def get_common_log_fields(self) -> list[str]:
        """Dotted paths of every field seen in a sample of 1000 rows."""
        parsed = await self._query_last_week("source logs | limit 1000")
        fields: dict[str, None] = {}
        for row in parsed.results:
            if row.user_data is not None:
                fields.update(dict.fromkeys(get_keys(row.user_data)))
        return list(fields)

    async def get_common_log_values(self, field: str) -> list[Any]:
        """Up to 100 distinct values of ``field``."""
        parsed = await self._query_last_week(
            f"source logs | distinct {field} | limit 100"
        )
        return [
            next(iter(row.user_data.values()))
            for row in parsed.results
            if row.user_data
        ]
