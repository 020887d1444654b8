import os
import typing as t

from envier import En

from ddci.internal.constants import DEFAULT_AGENT_HOSTNAME
from ddci.internal.constants import DEFAULT_AGENT_PORT
from ddci.internal.constants import DEFAULT_AGENT_SOCKET_FILE
from ddci.internal.constants import DEFAULT_SITE
from ddci.internal.constants import DEFAULT_TELEMETRY_HEARTBEAT_INTERVAL_SECONDS


def _derive_agent_url(config: "CIConfig") -> str:
    url = config._agent_url
    if not url:
        if config._agent_host is not None or config._agent_port is not None:
            host = config._agent_host or DEFAULT_AGENT_HOSTNAME
            port = config._agent_port or DEFAULT_AGENT_PORT
            url = "http://%s:%s" % (host, port)
        elif os.path.exists(DEFAULT_AGENT_SOCKET_FILE):
            url = "unix://%s" % DEFAULT_AGENT_SOCKET_FILE
        else:
            url = "http://%s:%s" % (DEFAULT_AGENT_HOSTNAME, DEFAULT_AGENT_PORT)
    return url


class CIConfig(En):
    __prefix__ = "dd"

    enabled = En.v(
        bool,
        "trace.ci_enabled",
        default=False,
        help_type="Boolean",
        help="Enable CI Visibility. When disabled every collaborator call is accepted and ignored.",
    )

    api_key = En.v(
        t.Optional[str],
        "api_key",
        default=None,
        help_type="String",
        help="API key used to authenticate against the intake in agentless mode.",
    )

    site = En.v(
        str,
        "site",
        default=DEFAULT_SITE,
        help_type="String",
        help="Datadog site the agentless intake host is derived from, e.g. ``datadoghq.eu``.",
    )

    env = En.v(
        t.Optional[str],
        "env",
        default=None,
        help_type="String",
        help="Environment name sent in the payload metadata.",
    )

    service = En.v(
        t.Optional[str],
        "service",
        default=None,
        help_type="String",
        help="Service name used for events that do not provide one.",
    )

    _agent_url = En.v(
        t.Optional[str],
        "trace.agent_url",
        default=None,
        help_type="String",
        help="URL of the local agent, e.g. ``http://localhost:8126`` or ``unix:///var/run/datadog/apm.socket``.",
    )

    _agent_host = En.v(
        t.Optional[str],
        "agent.host",
        default=None,
        help_type="String",
        help="Hostname of the local agent, used when no agent URL is given.",
    )

    _agent_port = En.v(
        t.Optional[int],
        "trace.agent_port",
        default=None,
        help_type="Integer",
        help="Port of the local agent, used when no agent URL is given.",
    )

    # Effective agent URL
    agent_url = En.d(str, _derive_agent_url)

    telemetry_enabled = En.v(
        bool,
        "instrumentation_telemetry_enabled",
        default=True,
        help_type="Boolean",
        help="Record internal telemetry metrics.",
    )

    telemetry_heartbeat_interval = En.v(
        float,
        "telemetry_heartbeat_interval",
        default=DEFAULT_TELEMETRY_HEARTBEAT_INTERVAL_SECONDS,
        help_type="Float",
        help="Seconds between two telemetry submissions.",
    )


class CIVisibilityConfig(En):
    __prefix__ = "dd.civisibility"

    agentless_enabled = En.v(
        bool,
        "agentless_enabled",
        default=False,
        help_type="Boolean",
        help="Send events straight to the intake using ``DD_API_KEY`` instead of going through the agent.",
    )

    agentless_url = En.v(
        str,
        "agentless_url",
        default="",
        help_type="String",
        help="Override the agentless intake URL.",
    )

    test_suite_level_visibility_enabled = En.v(
        bool,
        "experimental_test_suite_level_visibility_enabled",
        default=False,
        help_type="Boolean",
        help="Emit session, module and suite events in addition to tests.",
    )

    itr_enabled = En.v(
        bool,
        "itr_enabled",
        default=False,
        help_type="Boolean",
        help="Fetch Intelligent Test Runner settings from the backend at startup.",
    )

    log_level = En.v(
        str,
        "log_level",
        default="info",
        help_type="String",
        help="Level of the ``ddci`` logger.",
    )
