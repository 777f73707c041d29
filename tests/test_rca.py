import asyncio
from datetime import datetime, timezone

import pytest

from incident_rca import log_analysis
from incident_rca.errors import (
    DocumentVerificationError,
    KnowledgeBaseNotSetUpError,
    NoIntegrationsError,
    OrganizationNotFoundError,
    QueryGenerationError,
)
from incident_rca.generation import NO_ADDITIONAL_INFO
from incident_rca.log_analysis import RAW_LOGS_FALLBACK_HEADER
from incident_rca.models import AlertEvent, LogCluster
from incident_rca.rca import RCAStage, run_rca
from tests.fakes import (
    FakeLLM,
    FakeLogProvider,
    FakeSecretManager,
    FakeVectorStore,
    FakeVectorStoreFactory,
    InMemoryRepository,
    StaticAlertParser,
    doc,
    make_integration,
    rca_responder,
)

QUERIES = ["disk usage host web-3", "web-3 alerts", "disk space incidents"]

SUMMARY = "Root cause: log rotation stopped on web-3 after the 2024-04-30 deploy."

EVENT = AlertEvent(
    source="PagerDuty",
    message="Disk usage at 95% on host web-3",
    created_at=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
    data={"host": "web-3"},
)

LOG_ROWS = [{"level": "ERROR", "message": "No space left on device"}]


def _store() -> FakeVectorStore:
    return FakeVectorStore({
        QUERIES[0]: [doc("runbook: clean /var/log on web hosts", 0.82)],
        QUERIES[1]: [doc("web-3 is an nginx frontend", 0.64), doc("lunch menu", 0.2)],
        QUERIES[2]: [doc("postmortem: logrotate disabled by deploy", 0.91)],
    })


RELEVANT = {
    "runbook: clean /var/log on web hosts",
    "web-3 is an nginx frontend",
    "postmortem: logrotate disabled by deploy",
}


def _run(
    llm,
    organization,
    knowledge_index,
    *,
    integrations=None,
    log_error=None,
    on_stage=None,
    store=None,
):
    repository = InMemoryRepository(
        organizations=[organization] if organization else [],
        indexes=[knowledge_index] if knowledge_index else [],
        integrations=integrations if integrations is not None else [
            make_integration("PagerDuty"),
            make_integration("FakeLogs"),
        ],
    )
    return asyncio.run(
        run_rca(
            "Q1ABCDEF",
            "pagerduty",
            "org-1",
            llm=llm.runnable,
            repository=repository,
            secret_manager=FakeSecretManager(),
            vector_store_factory=FakeVectorStoreFactory(store or _store()),
            log_providers={
                "FakeLogs": lambda integration: FakeLogProvider(
                    integration, LOG_ROWS, log_error
                ),
            },
            alert_parsers={"pagerduty": StaticAlertParser(EVENT)},
            log_parser_url="http://log-parser.test",
            timeout=5,
            on_stage=on_stage,
        )
    )


def _summary_prompt(llm: FakeLLM) -> str:
    (prompt,) = [p for p in llm.prompts if "Root-cause analysis:" in p]
    return prompt


@pytest.fixture
def clusters(monkeypatch):
    calls = []

    async def fake_request_log_clusters(raw_logs, route, severity_key, message_key, **kwargs):
        calls.append((route, severity_key, message_key))
        return [LogCluster(
            Level="ERROR",
            EventId="e1",
            EventTemplate="No space left on device",
            Occurrences=120,
            Percentage=100.0,
        )]

    monkeypatch.setattr(log_analysis, "request_log_clusters", fake_request_log_clusters)
    return calls


def test_run_rca_returns_summary_verbatim(organization, knowledge_index, clusters) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY))
    stages = []

    result = _run(llm, organization, knowledge_index, on_stage=stages.append)

    assert result == SUMMARY
    assert stages == [
        RCAStage.FETCH_CONTEXT,
        RCAStage.GENERATE_QUERIES,
        RCAStage.RETRIEVE,
        RCAStage.FILTER,
        RCAStage.RANK,
        RCAStage.ANALYZE_LOGS,
        RCAStage.SUMMARIZE,
        RCAStage.DONE,
    ]
    assert clusters == [("fakelogs", "level", "message")]

    prompt = _summary_prompt(llm)
    assert "Disk usage at 95% on host web-3" in prompt
    assert "postmortem: logrotate disabled by deploy" in prompt
    assert "lunch menu" not in prompt
    assert "Log template: No space left on device" in prompt
    # Ranked context: highest score first
    assert prompt.index("postmortem: logrotate") < prompt.index("runbook: clean") < prompt.index("web-3 is an nginx")


def test_run_rca_without_log_integration(organization, knowledge_index) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY))

    result = _run(
        llm, organization, knowledge_index, integrations=[make_integration("PagerDuty")]
    )

    assert result == SUMMARY
    assert NO_ADDITIONAL_INFO in _summary_prompt(llm)


def test_run_rca_continues_when_log_fetch_fails(organization, knowledge_index) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY))
    stages = []

    result = _run(
        llm,
        organization,
        knowledge_index,
        log_error=ConnectionError("log vendor down"),
        on_stage=stages.append,
    )

    assert result == SUMMARY
    assert stages[-1] == RCAStage.DONE
    assert NO_ADDITIONAL_INFO in _summary_prompt(llm)


def test_run_rca_passes_raw_logs_when_clustering_fails(organization, knowledge_index) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY, log_keys="no idea"))

    result = _run(llm, organization, knowledge_index)

    assert result == SUMMARY
    prompt = _summary_prompt(llm)
    assert RAW_LOGS_FALLBACK_HEADER in prompt
    assert "No space left on device" in prompt


def test_run_rca_with_no_relevant_documents(organization, knowledge_index, clusters) -> None:
    llm = FakeLLM(rca_responder(QUERIES, set(), SUMMARY))

    assert _run(llm, organization, knowledge_index) == SUMMARY
    assert "No relevant documents found." in _summary_prompt(llm)


def test_run_rca_requires_organization(knowledge_index) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY))
    stages = []

    with pytest.raises(OrganizationNotFoundError) as excinfo:
        _run(llm, None, knowledge_index, on_stage=stages.append)

    assert excinfo.value.status_code == 404
    assert stages == []
    assert llm.prompts == []


def test_run_rca_requires_knowledge_base(organization) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY))

    with pytest.raises(KnowledgeBaseNotSetUpError) as excinfo:
        _run(llm, organization, None)

    assert str(excinfo.value) == "Knowledge base is not set up. Analysis cannot be done."
    assert llm.prompts == []


def test_run_rca_requires_integrations(organization, knowledge_index) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY))

    with pytest.raises(NoIntegrationsError):
        _run(llm, organization, knowledge_index, integrations=[])

    assert llm.prompts == []


def test_run_rca_fails_on_bad_query_generation(organization, knowledge_index) -> None:
    llm = FakeLLM(lambda _: "I cannot help with that")
    stages = []

    with pytest.raises(QueryGenerationError):
        _run(llm, organization, knowledge_index, on_stage=stages.append)

    assert stages == [RCAStage.FETCH_CONTEXT, RCAStage.GENERATE_QUERIES, RCAStage.FAILED]


def test_run_rca_fails_on_unparseable_verification(organization, knowledge_index) -> None:
    def respond(prompt: str) -> str:
        if "=== DOCUMENT ===" in prompt:
            return "probably"
        return rca_responder(QUERIES, RELEVANT, SUMMARY)(prompt)

    llm = FakeLLM(respond)
    stages = []

    with pytest.raises(DocumentVerificationError):
        _run(llm, organization, knowledge_index, on_stage=stages.append)

    assert stages[-2:] == [RCAStage.FILTER, RCAStage.FAILED]
    assert not any("Root-cause analysis:" in p for p in llm.prompts)


def test_run_rca_propagates_store_errors(organization, knowledge_index) -> None:
    llm = FakeLLM(rca_responder(QUERIES, RELEVANT, SUMMARY))
    stages = []

    with pytest.raises(ConnectionError):
        _run(
            llm,
            organization,
            knowledge_index,
            store=FakeVectorStore({}, error=ConnectionError("atlas down")),
            on_stage=stages.append,
        )

    assert stages[-2:] == [RCAStage.RETRIEVE, RCAStage.FAILED]
