from __future__ import annotations

import typing as t

from ddci.internal.constants import SETTINGS_PATH
from ddci.internal.constants import SETTINGS_REQUEST_TYPE
from ddci.internal.git import GitTag
from ddci.internal.logger import get_logger
from ddci.internal.settings_data import Settings
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.telemetry.constants import MetricName
from ddci.internal.transport import Subdomain
from ddci.internal.transport import TransportSetup


log = get_logger(__name__)


class APIClient:
    """Client for the backend API subdomain."""

    def __init__(
        self,
        service: str,
        env: t.Optional[str],
        env_tags: t.Dict[str, str],
        configurations: t.Dict[str, str],
        transport_setup: TransportSetup,
        telemetry_api: t.Optional[TelemetryAPI] = None,
    ) -> None:
        self.service = service
        self.env = env
        self.env_tags = env_tags
        self.configurations = configurations
        self.transport = transport_setup.get_transport(Subdomain.API)
        self.telemetry_api = telemetry_api or TelemetryAPI.get()

    def close(self) -> None:
        self.transport.close()

    def get_settings(self) -> Settings:
        """Fetch the library settings for this service and commit. Any failure yields the default, all-off settings."""
        telemetry = self.telemetry_api.with_request_metric_names(
            count=MetricName.GIT_REQUESTS_SETTINGS,
            duration=MetricName.GIT_REQUESTS_SETTINGS_MS,
            response_bytes=None,
            error=MetricName.GIT_REQUESTS_SETTINGS_ERRORS,
        )

        try:
            request_data = {
                "data": {
                    "id": "1",
                    "type": SETTINGS_REQUEST_TYPE,
                    "attributes": {
                        "service": self.service,
                        "env": self.env,
                        "repository_url": self.env_tags[GitTag.REPOSITORY_URL],
                        "sha": self.env_tags[GitTag.COMMIT_SHA],
                        "branch": self.env_tags.get(GitTag.BRANCH) or self.env_tags.get(GitTag.TAG),
                        "test_level": "test",
                        "configurations": self.configurations,
                    },
                }
            }
        except KeyError as e:
            log.error("Git info not available, cannot fetch settings (missing key: %s)", e)
            return Settings()

        response = self.transport.post_json(SETTINGS_PATH, request_data)
        telemetry.record_request(
            seconds=response.elapsed_seconds,
            response_bytes=response.response_length,
            compressed_response=response.is_gzip_response,
            error=response.error_type,
            status_code=response.status_code,
        )

        if not response.ok:
            log.warning("Error getting settings from API: %s", response.error_description)
            return Settings()

        try:
            attributes = response.json()["data"]["attributes"]
            settings = Settings.from_attributes(attributes)
        except (AttributeError, ValueError, KeyError, TypeError) as e:
            log.warning("Error parsing settings from API: %s", e)
            return Settings()

        log.debug("Received settings: %s", settings)
        self.telemetry_api.record_settings(settings)
        return settings
