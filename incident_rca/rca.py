"""
Incident RCA - Orchestrator
============================

Runs a complete root-cause analysis for one alert.

ARCHITECTURE:
    fetch-context → generate-queries → retrieve → filter → rank
        → analyze-logs → summarize → done

    Any unrecovered error moves the run to `failed` and is re-raised to the
    caller. The analyze-logs stage is the exception: it has its own raw-log
    fallback and a failure there only means the summary gets no log section.

Stages run strictly in sequence; only retrieve and filter fan out
concurrently inside the stage.

Usage:
    python -m incident_rca.rca Q1ABCDEF --org 65f0c0ffee --source pagerduty
"""

import argparse
import asyncio
import logging
import sys
from enum import Enum
from typing import Callable, Optional

from langchain_core.runnables import Runnable

from incident_rca.alerts import AlertParser, build_incident_text, parse_alert
from incident_rca.config import (
    APP_ENV,
    LOG_PARSER_URL,
    REQUEST_TIMEOUT_SECONDS,
    configure_logging,
    validate_config,
)
from incident_rca.errors import (
    KnowledgeBaseNotSetUpError,
    NoIntegrationsError,
    OrganizationNotFoundError,
)
from incident_rca.generation import generate_queries, summarize
from incident_rca.llm import create_chat_model
from incident_rca.log_analysis import LogToolProviderFactory, analyze_logs
from incident_rca.models import Integration, RunContext
from incident_rca.retrieval import (
    VectorStoreFactory,
    filter_documents,
    format_context,
    get_vector_store,
    rank_documents,
    run_queries,
)
from incident_rca.store import (
    MongoRepository,
    MongoSecretManager,
    Repository,
    SecretManager,
)
from incident_rca.timeframes import Timeframe

LOGGER = logging.getLogger(__name__)


class RCAStage(str, Enum):
    FETCH_CONTEXT = "fetch-context"
    GENERATE_QUERIES = "generate-queries"
    RETRIEVE = "retrieve"
    FILTER = "filter"
    RANK = "rank"
    ANALYZE_LOGS = "analyze-logs"
    SUMMARIZE = "summarize"
    DONE = "done"
    FAILED = "failed"


async def _analyze_logs_or_skip(
    incident_text: str,
    integrations: list[Integration],
    context: RunContext,
    llm: Runnable,
    timeframe: Timeframe,
    providers: Optional[dict[str, LogToolProviderFactory]],
    log_parser_url: str,
    timeout: Optional[float],
) -> Optional[str]:
    try:
        return await analyze_logs(
            incident_text,
            integrations,
            context,
            llm,
            timeframe,
            providers=providers,
            log_parser_url=log_parser_url,
            timeout=timeout,
        )
    except Exception:
        LOGGER.warning(
            "log analysis failed for event %s, continuing without logs",
            context.event_id,
            exc_info=True,
        )
        return None


# =============================================================================
# FUNCTION: run_rca
# =============================================================================
async def run_rca(
    event_id: str,
    event_source: str,
    organization_id: str,
    *,
    llm: Runnable,
    repository: Repository,
    secret_manager: SecretManager,
    vector_store_factory: VectorStoreFactory = get_vector_store,
    log_providers: Optional[dict[str, LogToolProviderFactory]] = None,
    alert_parsers: Optional[dict[str, AlertParser]] = None,
    timeframe: Timeframe = Timeframe.LAST_24_HOURS,
    log_parser_url: str = LOG_PARSER_URL,
    timeout: Optional[float] = REQUEST_TIMEOUT_SECONDS,
    on_stage: Optional[Callable[[RCAStage], None]] = None,
) -> str:
    """
    Investigate one alert and return the root-cause analysis text.

    Args:
        event_id: Incident id at the alerting vendor
        event_source: Alerting vendor tag (e.g. "pagerduty")
        organization_id: Organization that owns the alert
        llm: Chat model used by every LLM step
        repository: Organizations, indexes and integrations
        secret_manager: Populates integration credentials
        vector_store_factory: Opens the knowledge-base vector store
        log_providers: Log providers by vendor name (defaults to all shipped)
        alert_parsers: Alert parsers by event source (defaults to all shipped)
        timeframe: Lookback window for the log analysis
        log_parser_url: Base URL of the log parser service
        timeout: Seconds allowed for each external call (None = no limit)
        on_stage: Called with every stage the run enters

    Returns:
        The summary produced by the LLM, verbatim

    Raises:
        OrganizationNotFoundError, KnowledgeBaseNotSetUpError,
        NoIntegrationsError: Before any stage runs
        Any error of a stage other than analyze-logs
    """
    organization = await asyncio.to_thread(repository.get_organization, organization_id)
    if organization is None:
        raise OrganizationNotFoundError()

    index = await asyncio.to_thread(repository.get_index, organization_id)
    if index is None:
        raise KnowledgeBaseNotSetUpError()

    integrations = await asyncio.to_thread(repository.get_integrations, organization_id)
    if not integrations:
        raise NoIntegrationsError()

    populated_integrations = await asyncio.to_thread(
        secret_manager.populate_credentials, integrations
    )

    context = RunContext(
        organization_id=organization_id,
        organization_name=organization.name,
        env=APP_ENV,
        event_id=event_id,
        context=f"trigger-{event_source}",
    )

    stage = RCAStage.FETCH_CONTEXT

    def enter(next_stage: RCAStage) -> None:
        nonlocal stage
        stage = next_stage
        LOGGER.debug("RCA %s: %s", context.event_id, stage.value)
        if on_stage is not None:
            on_stage(stage)

    try:
        enter(RCAStage.FETCH_CONTEXT)
        event = await parse_alert(
            event_id,
            event_source,
            organization_id,
            repository=repository,
            secret_manager=secret_manager,
            parsers=alert_parsers,
            timeout=timeout,
        )
        incident_text = build_incident_text(event)

        # Phase 1 - Information retrieval from the knowledge base
        enter(RCAStage.GENERATE_QUERIES)
        queries = await generate_queries(incident_text, llm, timeout=timeout)

        enter(RCAStage.RETRIEVE)
        documents = await run_queries(
            index,
            queries,
            vector_store_factory=vector_store_factory,
            timeout=timeout,
        )

        enter(RCAStage.FILTER)
        filtered_documents = await filter_documents(
            incident_text, documents, llm, timeout=timeout
        )

        enter(RCAStage.RANK)
        context_text = format_context(rank_documents(filtered_documents))

        # Phase 2 - Information from logs
        enter(RCAStage.ANALYZE_LOGS)
        logs_text = await _analyze_logs_or_skip(
            incident_text,
            populated_integrations,
            context,
            llm,
            timeframe,
            log_providers,
            log_parser_url,
            timeout,
        )

        # Phase 3 - Summarization
        enter(RCAStage.SUMMARIZE)
        analysis = await summarize(
            incident_text, context_text, llm, logs_text, timeout=timeout
        )
    except Exception:
        LOGGER.exception(
            "RCA failed at stage %s (organization=%s, event=%s, context=%s)",
            stage.value,
            context.organization_id,
            context.event_id,
            context.context,
        )
        enter(RCAStage.FAILED)
        raise

    enter(RCAStage.DONE)
    LOGGER.info("RCA completed for event %s", context.event_id)
    return analysis


# =============================================================================
# MAIN
# =============================================================================
def main(argv: Optional[list[str]] = None) -> int:
    """Run an RCA from the command line and print it."""
    parser = argparse.ArgumentParser(
        description="Run a root-cause analysis for an alert"
    )
    parser.add_argument("event_id", help="Incident id at the alerting vendor")
    parser.add_argument("--org", required=True, help="Organization id")
    parser.add_argument("--source", default="pagerduty", help="Alerting vendor")
    parser.add_argument(
        "--timeframe",
        default=Timeframe.LAST_24_HOURS.value,
        choices=[timeframe.value for timeframe in Timeframe],
        help="Lookback window for the log analysis",
    )
    args = parser.parse_args(argv)

    configure_logging()

    validation = validate_config()
    if not validation["valid"]:
        for error in validation["errors"]:
            print(f"❌ {error}")
        return 1

    with MongoRepository() as repository:
        analysis = asyncio.run(run_rca(
            args.event_id,
            args.source,
            args.org,
            llm=create_chat_model(),
            repository=repository,
            secret_manager=MongoSecretManager(repository.client),
            timeframe=Timeframe(args.timeframe),
        ))

    print("=" * 60)
    print("🤖 Root-cause analysis:")
    print("=" * 60)
    print(analysis)
    return 0


if __name__ == "__main__":
    sys.exit(main())
