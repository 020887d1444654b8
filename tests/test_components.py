import logging

import pytest

from ddci.internal.components import activate
from ddci.internal.constants import SETTINGS_PATH
from ddci.internal.constants import TELEMETRY_AGENTLESS_PATH
from ddci.internal.periodic import ServiceStatus
from ddci.internal.platform import get_platform_tags
from ddci.internal.recorder import NullRecorder
from ddci.internal.recorder import Recorder
from ddci.internal.settings_data import Settings
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.telemetry.constants import EventType
from ddci.internal.telemetry.constants import MetricName
from ddci.internal.test_data import TestTag
from ddci.internal.transport import AgentlessSetup
from ddci.internal.transport import EVPProxySetup
from ddci.internal.writer import CIVisibilityWriter
from ddci.internal.writer import NullWriter
from ddci.settings.civis import CIConfig
from ddci.settings.civis import CIVisibilityConfig


GIT_ENV = {
    "DD_GIT_REPOSITORY_URL": "https://github.com/org/repo.git",
    "DD_GIT_COMMIT_SHA": "b9f0fb3fdbb94c9d24b2c75b49663122a529e123",
    "DD_GIT_BRANCH": "main",
}


@pytest.fixture
def components(tmp_path, intake):
    started = []

    def _activate(**kwargs):
        kwargs.setdefault("env", {})
        kwargs.setdefault("cwd", str(tmp_path))
        result = activate(ci_config=CIConfig(), civis_config=CIVisibilityConfig(), register_atexit=False, **kwargs)
        started.append(result)
        return result

    yield _activate

    for result in started:
        result.shutdown(timeout=5)


@pytest.fixture
def agentless(monkeypatch):
    monkeypatch.setenv("DD_TRACE_CI_ENABLED", "true")
    monkeypatch.setenv("DD_CIVISIBILITY_AGENTLESS_ENABLED", "true")
    monkeypatch.setenv("DD_API_KEY", "k")


def test_disabled(components, intake):
    result = components()

    assert isinstance(result.recorder, NullRecorder)
    assert isinstance(result.writer, NullWriter)
    assert intake.requests == []


def test_agentless_without_api_key(monkeypatch, components, intake, caplog):
    monkeypatch.setenv("DD_TRACE_CI_ENABLED", "true")
    monkeypatch.setenv("DD_CIVISIBILITY_AGENTLESS_ENABLED", "true")

    with caplog.at_level(logging.ERROR, logger="ddci"):
        result = components()

    assert isinstance(result.recorder, NullRecorder)
    assert "DD_API_KEY is not" in caplog.text
    assert intake.requests == []


def test_agentless(agentless, components, intake):
    result = components()

    assert isinstance(result.transport_setup, AgentlessSetup)
    assert result.transport_setup.site == "datadoghq.com"
    assert isinstance(result.writer, CIVisibilityWriter)
    assert isinstance(result.recorder, Recorder)
    assert result.recorder.service == "test"
    assert not result.recorder.test_suite_level_visibility_enabled
    assert intake.requests_to("/info") == []


def test_service_and_suite_level_from_environment(agentless, monkeypatch, components, intake):
    monkeypatch.setenv("DD_SERVICE", "svc")
    monkeypatch.setenv("DD_CIVISIBILITY_EXPERIMENTAL_TEST_SUITE_LEVEL_VISIBILITY_ENABLED", "true")

    result = components()

    assert result.recorder.service == "svc"
    assert result.recorder.test_suite_level_visibility_enabled


def test_unsupported_site_falls_back_to_the_agent(agentless, monkeypatch, components, intake, caplog):
    monkeypatch.setenv("DD_SITE", "example.com")
    intake.advertise("/evp_proxy/v2/")

    with caplog.at_level(logging.WARNING, logger="ddci"):
        result = components()

    assert isinstance(result.transport_setup, EVPProxySetup)
    assert result.transport_setup.path_prefix == "/evp_proxy/v2/"
    assert "not a supported site for agentless mode" in caplog.text


def test_evp_proxy(monkeypatch, components, intake):
    monkeypatch.setenv("DD_TRACE_CI_ENABLED", "true")
    intake.advertise("/evp_proxy/v2/", "/evp_proxy/v4/")

    result = components()

    assert isinstance(result.transport_setup, EVPProxySetup)
    assert result.transport_setup.path_prefix == "/evp_proxy/v4/"
    assert result.transport_setup.agent_url == "http://localhost:8126"


def test_no_transport_drops_events(monkeypatch, components, intake, caplog):
    monkeypatch.setenv("DD_TRACE_CI_ENABLED", "true")
    monkeypatch.setenv("DD_CIVISIBILITY_EXPERIMENTAL_TEST_SUITE_LEVEL_VISIBILITY_ENABLED", "true")
    intake.advertise("/v0.4/traces")

    with caplog.at_level(logging.WARNING, logger="ddci"):
        result = components()

    assert result.transport_setup is None
    assert isinstance(result.writer, NullWriter)
    assert isinstance(result.recorder, Recorder)
    assert not result.recorder.test_suite_level_visibility_enabled
    assert "No CI Visibility intake is reachable" in caplog.text


def test_itr_settings_become_session_tags(agentless, monkeypatch, components, intake):
    monkeypatch.setenv("DD_CIVISIBILITY_ITR_ENABLED", "true")
    intake.route(
        SETTINGS_PATH,
        body={"data": {"attributes": {"itr_enabled": True, "code_coverage": True, "tests_skipping": False}}},
    )

    result = components(env=GIT_ENV)

    assert result.settings == Settings(coverage_enabled=True, itr_enabled=True)
    (request,) = intake.requests_to(SETTINGS_PATH)
    assert request.json()["data"]["attributes"]["configurations"] == get_platform_tags()
    session = result.recorder.start_session()
    assert session.get_tag(TestTag.ITR_TESTS_SKIPPING_ENABLED) == "false"
    assert session.get_tag(TestTag.CODE_COVERAGE_ENABLED) == "true"
    assert session.get_tag(TestTag.ITR_TESTS_SKIPPING_TYPE) == "test"
    assert session.get_tag("git.branch") == "main"


def test_settings_are_not_fetched_without_itr(agentless, components, intake):
    result = components(env=GIT_ENV)

    assert result.settings == Settings()
    assert intake.requests_to(SETTINGS_PATH) == []
    assert result.recorder.start_session().get_tag(TestTag.ITR_TESTS_SKIPPING_ENABLED) is None


def test_telemetry_can_be_disabled(agentless, monkeypatch, components, intake, telemetry):
    monkeypatch.setenv("DD_INSTRUMENTATION_TELEMETRY_ENABLED", "false")

    components()

    assert not telemetry.enabled


def test_shutdown_sends_telemetry(agentless, components, intake, telemetry):
    result = components()
    TelemetryAPI.get().record_manual_api_event(EventType.SESSION)

    result.shutdown(timeout=5)

    (request,) = intake.requests_to(TELEMETRY_AGENTLESS_PATH)
    body = request.json()
    assert body["request_type"] == "message-batch"
    names = [m["metric"] for event in body["payload"] for m in event["payload"]["series"]]
    assert MetricName.MANUAL_API_EVENTS in names
    assert telemetry.get_count_metrics("civisibility") == []
    assert result.telemetry.status == ServiceStatus.STOPPED


def test_telemetry_runs_without_a_reachable_intake(monkeypatch, components, intake, telemetry):
    monkeypatch.setenv("DD_TRACE_CI_ENABLED", "true")

    result = components()

    assert result.transport_setup is None
    assert result.telemetry is telemetry
    assert telemetry.status == ServiceStatus.RUNNING
