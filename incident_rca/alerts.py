"""
Incident RCA - Alert Normalizer
================================

Fetches an incident from the alerting vendor that triggered the run and
converts it into a vendor-neutral ``AlertEvent``.

ARCHITECTURE:
    event source -> AlertParser (registry) -> integration + credentials
    -> vendor API -> AlertEvent

Adding an alerting vendor means adding an ``AlertParser`` and registering it
in ``ALERT_PARSERS`` under its event-source tag.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from incident_rca.errors import IntegrationNotFoundError, UnsupportedEventSourceError
from incident_rca.models import AlertEvent, Integration
from incident_rca.store import Repository, SecretManager
from incident_rca.utils import http_timeout, with_timeout

LOGGER = logging.getLogger(__name__)

PAGERDUTY_API_URL = "https://api.pagerduty.com"


# =============================================================================
# VENDOR CLIENTS
# =============================================================================

class PagerDutyClient:
    """Minimal async client for the PagerDuty REST API."""

    def __init__(
        self,
        access_token: str,
        base_url: str = PAGERDUTY_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.base_url = base_url
        self.transport = transport

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/vnd.pagerduty+json;version=2",
        }

    async def get_incident(self, incident_id: str, timeout: Optional[float] = None) -> dict:
        """
        Fetch one incident, including its first trigger log entry.

        ``timeout`` bounds the HTTP exchange (None: HTTP_TIMEOUT_SECONDS).

        Raises:
            httpx.HTTPStatusError: On a non-2xx response
        """
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=http_timeout(timeout),
            transport=self.transport,
        ) as client:
            response = await client.get(
                f"/incidents/{incident_id}",
                params={"include[]": "first_trigger_log_entries"},
                headers=self._headers(),
            )
            response.raise_for_status()
            return response.json()


# =============================================================================
# ALERT PARSERS
# =============================================================================

class AlertParser(ABC):
    """Turns a vendor incident into an ``AlertEvent``."""

    vendor_name: str

    @abstractmethod
    async def fetch_event(
        self,
        event_id: str,
        integration: Integration,
        *,
        timeout: Optional[float] = None,
    ) -> AlertEvent:
        ...


class PagerDutyAlertParser(AlertParser):
    vendor_name = "PagerDuty"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    async def fetch_event(
        self,
        event_id: str,
        integration: Integration,
        *,
        timeout: Optional[float] = None,
    ) -> AlertEvent:
        client = PagerDutyClient(
            integration.credentials["access_token"], transport=self.transport
        )
        payload = await client.get_incident(event_id, timeout=timeout)
        incident = payload["incident"]
        trigger = incident.get("first_trigger_log_entry") or {}
        details = (trigger.get("channel") or {}).get("details") or {}

        return AlertEvent(
            source=self.vendor_name,
            message=incident["description"],
            created_at=incident["created_at"],
            data=details if isinstance(details, dict) else {"details": details},
        )


ALERT_PARSERS: dict[str, AlertParser] = {
    "pagerduty": PagerDutyAlertParser(),
}


# =============================================================================
# FUNCTION: parse_alert
# =============================================================================

async def parse_alert(
    event_id: str,
    event_source: str,
    organization_id: str,
    *,
    repository: Repository,
    secret_manager: SecretManager,
    parsers: Optional[dict[str, AlertParser]] = None,
    timeout: Optional[float] = None,
) -> AlertEvent:
    """
    Fetch the incident ``event_id`` from the vendor behind ``event_source``.

    Single attempt; vendor errors propagate to the caller.

    Raises:
        UnsupportedEventSourceError: No parser is registered for the source
        IntegrationNotFoundError: The organization has no integration for
            the vendor
    """
    parsers = ALERT_PARSERS if parsers is None else parsers
    parser = parsers.get(event_source.lower())
    if parser is None:
        raise UnsupportedEventSourceError(f"Unsupported event source: {event_source}")

    integration = await asyncio.to_thread(
        repository.get_integration_by_vendor, parser.vendor_name, organization_id
    )
    if integration is None:
        raise IntegrationNotFoundError(
            f"No {parser.vendor_name} integration for organization {organization_id}"
        )

    populated = await asyncio.to_thread(
        secret_manager.populate_credentials, [integration]
    )
    LOGGER.debug("fetching %s incident %s", parser.vendor_name, event_id)
    return await with_timeout(
        parser.fetch_event(event_id, populated[0], timeout=timeout),
        timeout,
    )


def build_incident_text(event: AlertEvent) -> str:
    """Render an alert as the incident description used in every prompt."""
    lines = [
        f"Alert source: {event.source}",
        f"Triggered at: {event.created_at.isoformat()}",
        f"Message: {event.message}",
    ]
    if event.data:
        lines.append("Details:")
        lines.append(json.dumps(event.data, indent=2, default=str))
    return "\n".join(lines)
