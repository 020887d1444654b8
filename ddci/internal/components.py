"""
Activation of the CI Visibility subsystem.

Reads the configuration once, picks the intake transport, fetches the library settings when the Intelligent Test
Runner is enabled, and wires the writer and the recorder together. Every failure here degrades to a recorder that
drops events instead of raising.
"""

from __future__ import annotations

import atexit
from dataclasses import dataclass
from dataclasses import field
import os
import typing as t

from ddci.internal.api_client import APIClient
from ddci.internal.constants import DD_SITE_ALLOWLIST
from ddci.internal.constants import DEFAULT_SERVICE_NAME
from ddci.internal.constants import TAG_FALSE
from ddci.internal.constants import TAG_TRUE
from ddci.internal.container import get_container_id
from ddci.internal.encoder import CIVisibilityEncoder
from ddci.internal.encoder import build_metadata
from ddci.internal.env_tags import get_env_tags
from ddci.internal.errors import SetupError
from ddci.internal.logger import get_logger
from ddci.internal.periodic import ServiceStatus
from ddci.internal.platform import get_platform_tags
from ddci.internal.recorder import NullRecorder
from ddci.internal.recorder import Recorder
from ddci.internal.serializers import get_serializers
from ddci.internal.settings_data import Settings
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.telemetry.client import TelemetryClient
from ddci.internal.telemetry.writer import TelemetryWriter
from ddci.internal.test_data import TestTag
from ddci.internal.transport import AgentlessSetup
from ddci.internal.transport import Subdomain
from ddci.internal.transport import TransportSetup
from ddci.internal.transport import detect_evp_proxy_setup
from ddci.internal.writer import CIVisibilityWriter
from ddci.internal.writer import NullWriter
from ddci.internal.writer import TraceWriter
from ddci.settings.civis import CIConfig
from ddci.settings.civis import CIVisibilityConfig


log = get_logger(__name__)


class _MissingAPIKey(Exception):
    pass


@dataclass
class Components:
    recorder: t.Union[Recorder, NullRecorder] = field(default_factory=NullRecorder)
    writer: TraceWriter = field(default_factory=NullWriter)
    transport_setup: t.Optional[TransportSetup] = None
    settings: Settings = field(default_factory=Settings)
    telemetry: t.Optional[TelemetryWriter] = None

    def shutdown(self, timeout: t.Optional[float] = None) -> None:
        self.recorder.shutdown(timeout)
        self.writer.stop(timeout)
        if self.telemetry is not None:
            self.telemetry.shutdown(timeout)


def select_transport_setup(ci_config: CIConfig, civis_config: CIVisibilityConfig) -> t.Optional[TransportSetup]:
    """
    Pick the intake transport.

    Agentless mode needs an API key and an allowlisted site (or an explicit intake URL); a site outside the allowlist
    falls back to the agent. Through the agent, the most preferred EVP proxy prefix it advertises is used. Returns
    ``None`` when no transport is available.
    """
    if civis_config.agentless_enabled:
        if not ci_config.api_key:
            raise _MissingAPIKey()

        if civis_config.agentless_url or ci_config.site in DD_SITE_ALLOWLIST:
            log.debug("Using agentless mode with site %s", ci_config.site)
            return AgentlessSetup(
                site=ci_config.site, api_key=ci_config.api_key, agentless_url=civis_config.agentless_url
            )

        log.warning(
            "DD_SITE %r is not a supported site for agentless mode (%s); sending through the agent instead",
            ci_config.site,
            ", ".join(sorted(DD_SITE_ALLOWLIST)),
        )

    return detect_evp_proxy_setup(ci_config.agent_url, container_id=get_container_id())


def _settings_tags(settings: Settings) -> t.Dict[str, str]:
    return {
        TestTag.ITR_TESTS_SKIPPING_ENABLED: TAG_TRUE if settings.skipping_enabled else TAG_FALSE,
        TestTag.CODE_COVERAGE_ENABLED: TAG_TRUE if settings.coverage_enabled else TAG_FALSE,
        TestTag.ITR_TESTS_SKIPPING_TYPE: "test",
    }


def _fetch_settings(
    transport_setup: TransportSetup, service: str, env: t.Optional[str], env_tags: t.Dict[str, str]
) -> Settings:
    client = APIClient(
        service=service,
        env=env,
        env_tags=env_tags,
        configurations=get_platform_tags(),
        transport_setup=transport_setup,
    )
    try:
        return client.get_settings()
    finally:
        client.close()


def _start_telemetry(
    telemetry_writer: TelemetryWriter,
    ci_config: CIConfig,
    transport_setup: t.Optional[TransportSetup],
    service: str,
) -> TelemetryWriter:
    client: t.Optional[TelemetryClient] = None
    if transport_setup is not None:
        try:
            client = TelemetryClient.from_setup(transport_setup, service, ci_config.env)
        except SetupError as e:
            log.debug("Could not set up the telemetry intake: %s", e)

    telemetry_writer.configure(client, ci_config.telemetry_heartbeat_interval)
    if telemetry_writer.status != ServiceStatus.RUNNING:
        telemetry_writer.start()
    return telemetry_writer


def activate(
    ci_config: t.Optional[CIConfig] = None,
    civis_config: t.Optional[CIVisibilityConfig] = None,
    env: t.Optional[t.Mapping[str, str]] = None,
    cwd: t.Optional[str] = None,
    register_atexit: bool = True,
) -> Components:
    """Build the recorder, writer and transport described by the configuration."""
    ci_config = ci_config or CIConfig()
    civis_config = civis_config or CIVisibilityConfig()

    if not ci_config.enabled:
        log.debug("CI Visibility is disabled")
        return Components()

    telemetry_writer = TelemetryAPI.get().writer
    if ci_config.telemetry_enabled:
        telemetry_writer.enable()
    else:
        telemetry_writer.disable()

    try:
        transport_setup = select_transport_setup(ci_config, civis_config)
    except _MissingAPIKey:
        log.error(
            "DD_CIVISIBILITY_AGENTLESS_ENABLED is set but DD_API_KEY is not; CI Visibility is disabled for this run"
        )
        return Components()

    env_tags = get_env_tags(env if env is not None else os.environ, cwd)
    service = ci_config.service or DEFAULT_SERVICE_NAME
    suite_level = civis_config.test_suite_level_visibility_enabled

    writer: TraceWriter = NullWriter()
    if transport_setup is not None:
        try:
            writer = CIVisibilityWriter(
                transport=transport_setup.get_transport(Subdomain.CITESTCYCLE),
                serializers=get_serializers(suite_level),
                encoder=CIVisibilityEncoder(metadata=build_metadata(ci_config.env)),
            )
        except SetupError as e:
            log.warning("Could not set up the CI Visibility intake: %s", e)
            transport_setup = None

    if transport_setup is None:
        log.warning("No CI Visibility intake is reachable; test events will be dropped")
        suite_level = False

    settings = Settings()
    if transport_setup is not None and civis_config.itr_enabled:
        settings = _fetch_settings(transport_setup, service, ci_config.env, env_tags)

    recorder = Recorder(
        writer=writer,
        env_tags=env_tags,
        service=service,
        test_suite_level_visibility_enabled=suite_level,
        session_tags=_settings_tags(settings) if civis_config.itr_enabled else None,
    )
    writer.start()

    telemetry: t.Optional[TelemetryWriter] = None
    if ci_config.telemetry_enabled:
        telemetry = _start_telemetry(telemetry_writer, ci_config, transport_setup, service)

    components = Components(
        recorder=recorder, writer=writer, transport_setup=transport_setup, settings=settings, telemetry=telemetry
    )
    if register_atexit:
        atexit.register(components.shutdown)
    return components
