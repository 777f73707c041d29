"""
Incident RCA - Log Analysis Module
===================================

Pulls recent logs from the organization's log vendor, groups them into
clusters of similar lines and renders the clusters as text for the summary.

ARCHITECTURE:
    Integrations → LogToolProvider → Raw logs (timeframe)
        → Sample rows → LLM: severity/message keys
        → Log parser service: POST /parse/<vendor> → Clusters → Text

KEY CONCEPT - Graceful degradation:
    Log analysis is optional context. If the keys cannot be extracted or the
    log parser fails, the (size-limited) raw logs are returned instead so the
    summary still sees them. Unlike the RAG phase, failures here never abort
    the run.
"""

import json
import logging
from typing import Any, Callable, Optional

import httpx
from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import JsonOutputParser
from langchain_core.runnables import Runnable
from pydantic import ValidationError

from incident_rca.config import LOG_PARSER_URL, LOG_SAMPLE_SIZE, MAX_RAW_LOG_CHARS
from incident_rca.coralogix import CoralogixLogProvider
from incident_rca.errors import (
    LogClusteringError,
    LogStructureKeysError,
    UnknownLogVendorError,
)
from incident_rca.log_tools import LogToolProvider
from incident_rca.models import Integration, LogCluster, ParsedLogs, RunContext
from incident_rca.prompts import extract_log_structure_keys_prompt
from incident_rca.timeframes import Timeframe, get_time_range
from incident_rca.utils import compact_json, http_timeout, with_timeout

LOGGER = logging.getLogger(__name__)

LogToolProviderFactory = Callable[[Integration], LogToolProvider]

LOG_TOOL_PROVIDERS: dict[str, LogToolProviderFactory] = {
    CoralogixLogProvider.vendor_name: CoralogixLogProvider,
}

RAW_LOGS_FALLBACK_HEADER = "Could not do log aggregation. Here are the raw logs instead:"


def get_log_provider(
    integration: Integration,
    providers: Optional[dict[str, LogToolProviderFactory]] = None,
) -> LogToolProvider:
    """
    Raises:
        UnknownLogVendorError: If the integration's vendor has no provider
    """
    providers = LOG_TOOL_PROVIDERS if providers is None else providers
    factory = providers.get(integration.vendor.name)
    if factory is None:
        raise UnknownLogVendorError(f"Unknown log vendor: {integration.vendor.name}")
    return factory(integration)


# =============================================================================
# FUNCTION: extract_log_structural_keys
# =============================================================================
async def extract_log_structural_keys(
    log_records: list[str],
    llm: Runnable,
    *,
    timeout: Optional[float] = None,
) -> tuple[str, str]:
    """
    Ask the LLM which fields of a log row hold the severity and the message.

    Args:
        log_records: Sample rows, each serialized as compact JSON

    Returns:
        (severity_key, message_key)

    Raises:
        LogStructureKeysError: If the response is not JSON or either key is
            missing or empty
    """
    chain = extract_log_structure_keys_prompt | llm | JsonOutputParser()
    try:
        result = await with_timeout(
            chain.ainvoke({"log_records": "\n".join(log_records)}),
            timeout,
        )
    except OutputParserException as error:
        raise LogStructureKeysError(f"Could not parse log structure keys: {error}") from error

    if not isinstance(result, dict):
        raise LogStructureKeysError("Failed to extract log structure keys")
    severity_key = result.get("severityKey")
    message_key = result.get("messageKey")
    for name, value in (("severityKey", severity_key), ("messageKey", message_key)):
        if not isinstance(value, str) or not value.strip():
            raise LogStructureKeysError(
                f"Failed to extract log structure keys: {name} is missing"
            )
    return severity_key, message_key


# =============================================================================
# FUNCTION: request_log_clusters
# =============================================================================
async def request_log_clusters(
    raw_logs: Any,
    route: str,
    severity_key: str,
    message_key: str,
    *,
    log_parser_url: str = LOG_PARSER_URL,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[LogCluster]:
    """
    Send raw vendor logs to the log parser service and return its clusters.

    Raises:
        httpx.HTTPError: On transport errors or a non-2xx response
        LogClusteringError: If the response has no valid clusters list
    """
    async with httpx.AsyncClient(
        timeout=http_timeout(timeout), transport=transport
    ) as client:
        response = await client.post(
            f"{log_parser_url.rstrip('/')}/parse/{route}",
            json={
                "logs": raw_logs,
                "severityKey": severity_key,
                "messageKey": message_key,
            },
        )
        response.raise_for_status()

    try:
        clusters = response.json()["clusters"]
        return [LogCluster.model_validate(cluster) for cluster in clusters]
    except (ValueError, KeyError, TypeError, ValidationError) as error:
        raise LogClusteringError(f"Invalid log parser response: {error}") from error


# =============================================================================
# FUNCTION: get_log_clusters
# =============================================================================
async def get_log_clusters(
    raw_logs: Any,
    parsed_logs: ParsedLogs,
    route: str,
    llm: Runnable,
    *,
    log_parser_url: str = LOG_PARSER_URL,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[LogCluster]:
    """
    Cluster a batch of fetched logs.

    STEPS:
    1. Take the first LOG_SAMPLE_SIZE rows as a sample
    2. Ask the LLM for the severity and message keys
    3. POST the full raw batch and the keys to the log parser
    """
    sample = [compact_json(row) for row in parsed_logs.rows()[:LOG_SAMPLE_SIZE]]
    if not sample:
        raise LogClusteringError("No logs found in the selected timeframe")

    severity_key, message_key = await extract_log_structural_keys(
        sample, llm, timeout=timeout
    )
    LOGGER.debug("log structure keys: severity=%s message=%s", severity_key, message_key)

    return await request_log_clusters(
        raw_logs,
        route,
        severity_key,
        message_key,
        log_parser_url=log_parser_url,
        timeout=timeout,
        transport=transport,
    )


# =============================================================================
# FORMATTING
# =============================================================================
def format_clusters(clusters: list[LogCluster]) -> str:
    """
    Render clusters as text for the summary prompt.

    OUTPUT FORMAT:
        Log aggregation/cluster analysis:
        Cluster: 1
        Log level: ERROR
        Log template: Connection to <*> timed out
        Occurrences: 42
        Percentage: 61.5
        Additional cluster info: {...}
        ----------------
        Cluster: 2
        ...
    """
    if not clusters:
        return "Log aggregation/cluster analysis:\nNo log clusters found."

    blocks = []
    for number, cluster in enumerate(clusters, 1):
        blocks.append("\n".join([
            f"Cluster: {number}",
            f"Log level: {cluster.Level}",
            f"Log template: {cluster.EventTemplate}",
            f"Occurrences: {cluster.Occurrences}",
            f"Percentage: {cluster.Percentage}",
            "Additional cluster info: "
            + json.dumps(cluster.additional_info(), indent=2, default=str),
        ]))
    return "Log aggregation/cluster analysis:\n" + "\n----------------\n".join(blocks)


def limit_logs(text: str, max_chars: int = MAX_RAW_LOG_CHARS) -> str:
    """Truncate raw log text to max_chars, marking the cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n... (truncated)"


def raw_logs_fallback(parsed_logs: ParsedLogs, max_chars: int = MAX_RAW_LOG_CHARS) -> str:
    raw_text = json.dumps(parsed_logs.rows(), default=str)
    return f"{RAW_LOGS_FALLBACK_HEADER}\n{limit_logs(raw_text, max_chars)}"


# =============================================================================
# FUNCTION: analyze_logs
# =============================================================================
async def analyze_logs(
    incident_text: str,
    integrations: list[Integration],
    context: RunContext,
    llm: Runnable,
    timeframe: Timeframe = Timeframe.LAST_24_HOURS,
    *,
    query: str = "",
    providers: Optional[dict[str, LogToolProviderFactory]] = None,
    log_parser_url: str = LOG_PARSER_URL,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """
    Produce the log section of the investigation.

    Args:
        incident_text: Rendered incident description
        integrations: The organization's integrations, credentials populated
        context: Run correlation data (used for logging)
        llm: Chat model for the structural-key extraction
        timeframe: Lookback window for the log query
        query: Optional vendor filter expression
        providers: Log providers by vendor name (defaults to LOG_TOOL_PROVIDERS)
        log_parser_url: Base URL of the log parser service
        timeout: Seconds to wait for each external call
        transport: httpx transport for the log parser call (tests)

    Returns:
        Cluster analysis text, the raw-log fallback text when clustering
        fails, or None when no integration supports logs.

    Raises:
        Errors from fetching the logs themselves propagate.
    """
    providers = LOG_TOOL_PROVIDERS if providers is None else providers
    integration = next(
        (item for item in integrations if item.vendor.name in providers),
        None,
    )
    if integration is None:
        LOGGER.info(
            "no log integration for organization %s, skipping log analysis",
            context.organization_id,
        )
        return None

    provider = get_log_provider(integration, providers)
    start_date, end_date = get_time_range(timeframe)
    LOGGER.info(
        "analyzing %s logs from %s to %s for event %s",
        provider.vendor_name,
        start_date,
        end_date,
        context.event_id,
    )
    LOGGER.debug("incident under analysis: %s", incident_text)

    raw_logs, parsed_logs = await with_timeout(
        provider.fetch_logs(start_date, end_date, query=query, timeout=timeout),
        timeout,
    )

    try:
        clusters = await get_log_clusters(
            raw_logs,
            parsed_logs,
            provider.parser_route,
            llm,
            log_parser_url=log_parser_url,
            timeout=timeout,
            transport=transport,
        )
    except Exception as error:
        LOGGER.warning(
            "Error clustering %s logs for query %r, using raw logs: %s",
            provider.vendor_name,
            query,
            error,
        )
        return raw_logs_fallback(parsed_logs)

    return format_clusters(clusters)
