import asyncio
import json

import httpx
import pytest

from incident_rca.errors import (
    LogClusteringError,
    LogStructureKeysError,
    UnknownLogVendorError,
)
from incident_rca.log_analysis import (
    LOG_TOOL_PROVIDERS,
    RAW_LOGS_FALLBACK_HEADER,
    analyze_logs,
    extract_log_structural_keys,
    format_clusters,
    get_log_provider,
    limit_logs,
    request_log_clusters,
)
from incident_rca.models import LogCluster, RunContext
from incident_rca.timeframes import Timeframe
from incident_rca.utils import compact_json
from tests.fakes import FakeLLM, FakeLogProvider, make_integration

INCIDENT = "Alert source: PagerDuty\nMessage: High error rate on api"

ROWS = [
    {"level": "ERROR", "message": "Connection to db-1 timed out", "service": "api"},
    {"level": "ERROR", "message": "Connection to db-2 timed out", "service": "api"},
    {"level": "INFO", "message": "GET /health 200", "service": "api"},
]

CLUSTER = {
    "Level": "ERROR",
    "EventId": "e1",
    "EventTemplate": "Connection to <*> timed out",
    "Occurrences": 42,
    "Percentage": 61.5,
    "Service": "api",
}

CONTEXT = RunContext(
    organization_id="org-1",
    organization_name="Acme",
    env="test",
    event_id="E1",
    context="trigger-pagerduty",
)

KEYS_REPLY = '{"severityKey": "level", "messageKey": "message"}'


def _providers(rows=ROWS, error=None):
    created = []

    def factory(integration):
        provider = FakeLogProvider(integration, rows, error)
        created.append(provider)
        return provider

    return {"FakeLogs": factory}, created


def _parser_transport(requests: list, status_code: int = 200, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            status_code, json=body if body is not None else {"clusters": [CLUSTER]}
        )

    return httpx.MockTransport(handler)


def _run(llm, providers, transport=None, integrations=None, **kwargs):
    integrations = integrations or [
        make_integration("PagerDuty"),
        make_integration("FakeLogs"),
    ]
    return asyncio.run(
        analyze_logs(
            INCIDENT,
            integrations,
            CONTEXT,
            llm.runnable,
            providers=providers,
            log_parser_url="http://log-parser.test",
            transport=transport,
            **kwargs,
        )
    )


def test_analyze_logs_returns_formatted_clusters() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, created = _providers()
    requests = []

    result = _run(llm, providers, _parser_transport(requests))

    assert result == format_clusters([LogCluster.model_validate(CLUSTER)])
    assert "Log template: Connection to <*> timed out" in result

    (request,) = requests
    assert request.method == "POST"
    assert str(request.url) == "http://log-parser.test/parse/fakelogs"
    body = json.loads(request.content)
    assert body["severityKey"] == "level"
    assert body["messageKey"] == "message"
    assert len(body["logs"]) == len(ROWS)

    (provider,) = created
    (_, _, query, _) = provider.calls[0]
    assert query == ""


def test_analyze_logs_samples_first_rows_for_key_extraction() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, _ = _providers()

    _run(llm, providers, _parser_transport([]))

    (prompt,) = llm.prompts
    assert compact_json(ROWS[0]) in prompt
    assert compact_json(ROWS[1]) in prompt
    assert compact_json(ROWS[2]) not in prompt


def test_analyze_logs_without_log_integration_returns_none() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, created = _providers()

    result = _run(llm, providers, integrations=[make_integration("PagerDuty")])

    assert result is None
    assert created == []
    assert llm.prompts == []


def test_analyze_logs_falls_back_when_keys_missing() -> None:
    llm = FakeLLM(lambda _: '{"severityKey": "", "messageKey": "message"}')
    providers, _ = _providers()
    requests = []

    result = _run(llm, providers, _parser_transport(requests))

    assert result.startswith(RAW_LOGS_FALLBACK_HEADER)
    assert "Connection to db-1 timed out" in result
    assert requests == []


def test_analyze_logs_falls_back_when_parser_fails() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, _ = _providers()

    result = _run(llm, providers, _parser_transport([], status_code=500, body={}))

    assert result.startswith(RAW_LOGS_FALLBACK_HEADER)
    assert "GET /health 200" in result


def test_analyze_logs_falls_back_on_empty_batch() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, _ = _providers(rows=[])

    result = _run(llm, providers, _parser_transport([]))

    assert result == f"{RAW_LOGS_FALLBACK_HEADER}\n[]"
    assert llm.prompts == []


def test_analyze_logs_propagates_fetch_errors() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, _ = _providers(error=httpx.ConnectError("vendor unreachable"))

    with pytest.raises(httpx.ConnectError):
        _run(llm, providers, _parser_transport([]))


def test_analyze_logs_uses_timeframe_window() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, created = _providers()

    _run(llm, providers, _parser_transport([]), timeframe=Timeframe.LAST_HOUR, query="$d.service == 'api'")

    (start_date, end_date, query, _) = created[0].calls[0]
    assert start_date < end_date
    assert query == "$d.service == 'api'"


def test_request_log_clusters_rejects_invalid_body() -> None:
    transport = _parser_transport([], body={"unexpected": True})

    with pytest.raises(LogClusteringError):
        asyncio.run(
            request_log_clusters(
                [], "coralogix", "level", "message",
                log_parser_url="http://log-parser.test/",
                transport=transport,
            )
        )


@pytest.mark.parametrize(
    "reply",
    [
        "level and message",
        '{"severityKey": "level"}',
        '{"severityKey": "level", "messageKey": 3}',
        '["level", "message"]',
    ],
)
def test_extract_log_structural_keys_rejects_bad_responses(reply: str) -> None:
    llm = FakeLLM(lambda _: reply)

    with pytest.raises(LogStructureKeysError):
        asyncio.run(extract_log_structural_keys(["{}"], llm.runnable))


def test_extract_log_structural_keys_returns_keys() -> None:
    llm = FakeLLM(lambda _: '{"severityKey": "log.level", "messageKey": "msg"}')

    keys = asyncio.run(extract_log_structural_keys(['{"log":{"level":"ERROR"}}'], llm.runnable))

    assert keys == ("log.level", "msg")


def test_get_log_provider() -> None:
    integration = make_integration(
        "Coralogix", credentials={"logsKey": "k"}, metadata={"region": "EU1"}
    )

    provider = get_log_provider(integration)

    assert isinstance(provider, LOG_TOOL_PROVIDERS["Coralogix"])
    assert provider.parser_route == "coralogix"

    with pytest.raises(UnknownLogVendorError):
        get_log_provider(make_integration("Splunk"))


def test_format_clusters() -> None:
    second = {**CLUSTER, "EventId": "e2", "Level": "INFO", "Occurrences": 3}
    text = format_clusters([LogCluster.model_validate(CLUSTER), LogCluster.model_validate(second)])

    first_block, second_block = text.split("\n----------------\n")
    assert first_block.startswith("Log aggregation/cluster analysis:\nCluster: 1\nLog level: ERROR\n")
    assert "Occurrences: 42\nPercentage: 61.5\n" in first_block
    assert first_block.endswith(
        "Additional cluster info: " + json.dumps({"EventId": "e1", "Service": "api"}, indent=2)
    )
    assert second_block.startswith("Cluster: 2\nLog level: INFO\n")


def test_format_clusters_empty() -> None:
    assert format_clusters([]) == "Log aggregation/cluster analysis:\nNo log clusters found."


def test_limit_logs() -> None:
    assert limit_logs("short", max_chars=10) == "short"
    assert limit_logs("x" * 20, max_chars=10) == "x" * 10 + "\n... (truncated)"


def test_analyze_logs_passes_timeout_to_vendor_and_parser() -> None:
    llm = FakeLLM(lambda _: KEYS_REPLY)
    providers, created = _providers()
    requests = []

    _run(llm, providers, _parser_transport(requests), timeout=12)

    assert created[0].timeouts == [12]
    assert requests[0].extensions["timeout"]["read"] == 12
