"""
Intake transports.

A :class:`TransportSetup` is chosen once at startup and hands out a :class:`Transport` per intake subdomain. Agentless
transports talk to ``https://<subdomain>.<site>`` with an API key; EVP proxy transports go through the local agent,
which adds authentication and forwards to the subdomain named in the ``X-Datadog-EVP-Subdomain`` header.
"""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from enum import Enum
import typing as t

from ddci.internal.constants import CONTENT_TYPE_MSGPACK
from ddci.internal.constants import DEFAULT_HTTP_TIMEOUT_SECONDS
from ddci.internal.constants import EVP_PROXY_COMPRESSION_SUPPORTED
from ddci.internal.constants import EVP_PROXY_PATH_PREFIXES
from ddci.internal.constants import HEADER_CONTAINER_ID
from ddci.internal.constants import HEADER_CONTENT_TYPE
from ddci.internal.constants import HEADER_DD_API_KEY
from ddci.internal.constants import HEADER_EVP_SUBDOMAIN
from ddci.internal.constants import TELEMETRY_AGENT_PATH
from ddci.internal.constants import TELEMETRY_AGENTLESS_PATH
from ddci.internal.constants import TELEMETRY_AGENTLESS_URL
from ddci.internal.errors import SetupError
from ddci.internal.http import HTTPClient
from ddci.internal.http import Response
from ddci.internal.logger import get_logger


log = get_logger(__name__)


class Subdomain(str, Enum):
    API = "api"
    CITESTCYCLE = "citestcycle-intake"


class Transport:
    """Sends requests to one intake through an :class:`HTTPClient`."""

    def __init__(self, client: HTTPClient, default_headers: t.Optional[t.Dict[str, str]] = None) -> None:
        self.client = client
        self.default_headers = default_headers or {}

    @property
    def compress(self) -> bool:
        return self.client.compress

    def request(
        self,
        path: str,
        payload: t.Optional[bytes] = None,
        headers: t.Optional[t.Dict[str, str]] = None,
        verb: str = "POST",
    ) -> Response:
        full_headers = {HEADER_CONTENT_TYPE: CONTENT_TYPE_MSGPACK, **self.default_headers, **(headers or {})}
        return self.client.request(path, payload, headers=full_headers, verb=verb)

    def post_json(self, path: str, data: t.Any, headers: t.Optional[t.Dict[str, str]] = None) -> Response:
        return self.client.post_json(path, data, headers={**self.default_headers, **(headers or {})})

    def close(self) -> None:
        self.client.close()


class TransportSetup(ABC):
    telemetry_path: str

    @abstractmethod
    def get_transport(self, subdomain: Subdomain) -> Transport:
        """Return a transport for the given intake subdomain."""

    @abstractmethod
    def get_telemetry_transport(self) -> Transport:
        """Return a transport for the instrumentation telemetry intake; requests go to ``telemetry_path``."""


class AgentlessSetup(TransportSetup):
    telemetry_path = TELEMETRY_AGENTLESS_PATH

    def __init__(
        self,
        site: str,
        api_key: str,
        agentless_url: str = "",
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self.site = site
        self.api_key = api_key
        self.agentless_url = agentless_url
        self.timeout_seconds = timeout_seconds

    def url_for(self, subdomain: Subdomain) -> str:
        if subdomain == Subdomain.CITESTCYCLE and self.agentless_url:
            return self.agentless_url
        return f"https://{subdomain.value}.{self.site}"

    def get_transport(self, subdomain: Subdomain) -> Transport:
        client = HTTPClient(
            url=self.url_for(subdomain),
            default_headers={HEADER_DD_API_KEY: self.api_key},
            timeout_seconds=self.timeout_seconds,
            compress=True,
        )
        return Transport(client)

    def get_telemetry_transport(self) -> Transport:
        client = HTTPClient(
            url=TELEMETRY_AGENTLESS_URL % self.site,
            default_headers={HEADER_DD_API_KEY: self.api_key},
            timeout_seconds=self.timeout_seconds,
        )
        return Transport(client)


class EVPProxySetup(TransportSetup):
    telemetry_path = TELEMETRY_AGENT_PATH

    def __init__(
        self,
        agent_url: str,
        path_prefix: str,
        container_id: t.Optional[str] = None,
        timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self.agent_url = agent_url
        self.path_prefix = path_prefix
        self.container_id = container_id
        self.timeout_seconds = timeout_seconds

    @property
    def compress(self) -> bool:
        return EVP_PROXY_COMPRESSION_SUPPORTED.get(self.path_prefix, False)

    def get_transport(self, subdomain: Subdomain) -> Transport:
        headers = {HEADER_EVP_SUBDOMAIN: subdomain.value}
        if self.container_id:
            headers[HEADER_CONTAINER_ID] = self.container_id

        client = HTTPClient(
            url=self.agent_url,
            timeout_seconds=self.timeout_seconds,
            base_path=self.path_prefix.rstrip("/"),
            compress=self.compress,
        )
        return Transport(client, default_headers=headers)

    def get_telemetry_transport(self) -> Transport:
        headers = {HEADER_CONTAINER_ID: self.container_id} if self.container_id else {}
        client = HTTPClient(url=self.agent_url, timeout_seconds=self.timeout_seconds)
        return Transport(client, default_headers=headers)


def detect_evp_proxy_setup(
    agent_url: str,
    container_id: t.Optional[str] = None,
    timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
) -> t.Optional[EVPProxySetup]:
    """
    Ask the agent which endpoints it serves and return a proxy setup for the most preferred EVP proxy prefix.

    Returns ``None`` when the agent is unreachable or does not advertise any known prefix.
    """
    try:
        client = HTTPClient(agent_url, timeout_seconds=timeout_seconds)
    except SetupError as e:
        log.warning("Invalid agent URL %s: %s", agent_url, e)
        return None

    try:
        response = client.get_json("/info")
    finally:
        client.close()

    if not response.ok:
        log.debug("Could not query agent info at %s: %s", agent_url, response.error_description)
        return None

    try:
        endpoints = response.json().get("endpoints") or []
    except (ValueError, AttributeError) as e:
        log.debug("Could not parse agent info from %s: %s", agent_url, e)
        return None

    for prefix in EVP_PROXY_PATH_PREFIXES:
        if prefix in endpoints:
            log.debug("Using EVP proxy prefix %s on %s", prefix, agent_url)
            return EVPProxySetup(agent_url, prefix, container_id=container_id, timeout_seconds=timeout_seconds)

    log.debug("Agent at %s does not advertise an EVP proxy endpoint", agent_url)
    return None
