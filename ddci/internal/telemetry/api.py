# For a reference on available telemetry metrics, see:
# https://github.com/DataDog/dd-go/blob/prod/trace/apps/tracer-telemetry-intake/telemetry-metrics/static/common_metrics.json

from __future__ import annotations

import dataclasses
from enum import Enum
import threading
import typing as t

from ddci.internal.logger import get_logger
from ddci.internal.telemetry.constants import TELEMETRY_NAMESPACE_CIVISIBILITY
from ddci.internal.telemetry.constants import Endpoint
from ddci.internal.telemetry.constants import ErrorType
from ddci.internal.telemetry.constants import EventType
from ddci.internal.telemetry.constants import GitCommand
from ddci.internal.telemetry.constants import MetricName
from ddci.internal.telemetry.constants import MetricTag
from ddci.internal.telemetry.writer import TelemetryWriter
from ddci.internal.telemetry.writer import telemetry_writer


if t.TYPE_CHECKING:
    from ddci.internal.settings_data import Settings


log = get_logger(__name__)


class TelemetryAPI:
    _instance: t.Optional[TelemetryAPI] = None
    _instance_lock = threading.Lock()

    def __init__(self, writer: t.Optional[TelemetryWriter] = None) -> None:
        self.writer = writer or telemetry_writer
        self.namespace = TELEMETRY_NAMESPACE_CIVISIBILITY

    @classmethod
    def get(cls) -> TelemetryAPI:
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def set(cls, instance: t.Optional[TelemetryAPI]) -> None:
        cls._instance = instance

    def with_request_metric_names(
        self, count: str, duration: str, response_bytes: t.Optional[str], error: str
    ) -> TelemetryAPIRequestMetrics:
        return TelemetryAPIRequestMetrics(
            telemetry_api=self, count=count, duration=duration, response_bytes=response_bytes, error=error
        )

    def add_count_metric(self, metric_name: str, value: float, tags: t.Optional[t.Dict[str, t.Any]] = None) -> None:
        log.debug("Recording CI Visibility telemetry count: %r %r %r", metric_name, value, tags)
        self.writer.add_count_metric(self.namespace, metric_name, value, self._make_tags(tags))

    def add_distribution_metric(
        self, metric_name: str, value: float, tags: t.Optional[t.Dict[str, t.Any]] = None
    ) -> None:
        log.debug("Recording CI Visibility telemetry distribution: %r %r %r", metric_name, value, tags)
        self.writer.add_distribution_metric(self.namespace, metric_name, value, self._make_tags(tags))

    def _make_tags(self, tags: t.Optional[t.Dict[str, t.Any]]) -> t.Tuple[t.Tuple[str, str], ...]:
        """
        Convert a tag dictionary into a tag tuple.

        The boolean tag value `true` is converted to the string "true". Boolean `false` as well as `None` are omitted
        from the final result. Enum items are converted to their values. Everything else is converted to string.
        """
        if not tags:
            return ()

        tag_list: t.List[t.Tuple[str, str]] = []
        for key, value in tags.items():
            if value is None or value is False:
                continue
            if value is True:
                string_value = "true"
            elif isinstance(value, Enum):
                string_value = str(value.value)
            else:
                string_value = str(value)
            tag_list.append((key, string_value))

        return tuple(tag_list)

    # Test event lifecycle.

    def record_event_created(
        self,
        event_type: EventType,
        test_framework: t.Optional[str],
        has_codeowner: bool = False,
        is_unsupported_ci: bool = False,
    ) -> None:
        tags = {
            MetricTag.EVENT_TYPE: event_type,
            MetricTag.TEST_FRAMEWORK: test_framework,
            MetricTag.HAS_CODEOWNER: has_codeowner,
            MetricTag.IS_UNSUPPORTED_CI: is_unsupported_ci,
        }
        self.add_count_metric(MetricName.EVENT_CREATED, 1, tags)

    def record_event_finished(
        self,
        event_type: EventType,
        test_framework: t.Optional[str],
        has_codeowner: bool = False,
        is_unsupported_ci: bool = False,
        is_rum: bool = False,
        browser_driver: t.Optional[str] = None,
    ) -> None:
        tags = {
            MetricTag.EVENT_TYPE: event_type,
            MetricTag.TEST_FRAMEWORK: test_framework,
            MetricTag.HAS_CODEOWNER: has_codeowner,
            MetricTag.IS_UNSUPPORTED_CI: is_unsupported_ci,
            MetricTag.IS_RUM: is_rum,
            MetricTag.BROWSER_DRIVER: browser_driver,
        }
        self.add_count_metric(MetricName.EVENT_FINISHED, 1, tags)

    def record_manual_api_event(self, event_type: EventType) -> None:
        self.add_count_metric(MetricName.MANUAL_API_EVENTS, 1, {MetricTag.EVENT_TYPE: event_type})

    def record_test_session(self, provider: t.Optional[str], auto_injected: bool) -> None:
        tags = {MetricTag.PROVIDER: provider or "unsupported", MetricTag.AUTO_INJECTED: auto_injected}
        self.add_count_metric(MetricName.TEST_SESSION, 1, tags)

    # Event payloads sent by writers.

    def record_events_enqueued(self, count: int) -> None:
        self.add_count_metric(MetricName.EVENTS_ENQUEUED, count)

    def record_event_payload(
        self,
        endpoint: Endpoint,
        payload_size: int,
        request_seconds: float,
        events_count: int,
        compressed: bool,
        error: t.Optional[ErrorType],
        status_code: t.Optional[int] = None,
    ) -> None:
        tags = {MetricTag.ENDPOINT: endpoint}

        self.add_distribution_metric(MetricName.ENDPOINT_PAYLOAD_BYTES, payload_size, tags)
        self.add_count_metric(
            MetricName.ENDPOINT_PAYLOAD_REQUESTS, 1, {**tags, MetricTag.REQUEST_COMPRESSED: compressed}
        )
        self.add_distribution_metric(MetricName.ENDPOINT_PAYLOAD_REQUESTS_MS, request_seconds * 1000, tags)
        self.add_distribution_metric(MetricName.ENDPOINT_PAYLOAD_EVENTS_COUNT, events_count, tags)

        if error:
            self.record_event_payload_error(endpoint, error, status_code)

    def record_event_payload_serialization_seconds(self, endpoint: Endpoint, serialization_seconds: float) -> None:
        tags = {MetricTag.ENDPOINT: endpoint}
        self.add_distribution_metric(
            MetricName.ENDPOINT_PAYLOAD_EVENTS_SERIALIZATION_MS, serialization_seconds * 1000, tags
        )

    def record_event_payload_error(
        self, endpoint: Endpoint, error: ErrorType, status_code: t.Optional[int] = None
    ) -> None:
        tags = {
            MetricTag.ENDPOINT: endpoint,
            MetricTag.ERROR_TYPE: error,
            MetricTag.STATUS_CODE: status_code if error == ErrorType.STATUS_CODE else None,
        }
        self.add_count_metric(MetricName.ENDPOINT_PAYLOAD_REQUESTS_ERRORS, 1, tags)

    def record_event_payload_dropped(self, endpoint: Endpoint, count: int = 1) -> None:
        self.add_count_metric(MetricName.ENDPOINT_PAYLOAD_DROPPED, count, {MetricTag.ENDPOINT: endpoint})

    # Git.

    def record_git_command(self, command: GitCommand, elapsed_seconds: float, exit_code: int) -> None:
        tags = {MetricTag.COMMAND: command}
        self.add_count_metric(MetricName.GIT_COMMAND, 1, tags)
        self.add_distribution_metric(MetricName.GIT_COMMAND_MS, elapsed_seconds * 1000, tags)

        if exit_code:
            self.add_count_metric(
                MetricName.GIT_COMMAND_ERRORS, 1, {MetricTag.COMMAND: command, MetricTag.EXIT_CODE: str(exit_code)}
            )

    # Settings.

    def record_settings(self, settings: Settings) -> None:
        tags = {
            MetricTag.COVERAGE_ENABLED: settings.coverage_enabled,
            MetricTag.ITR_SKIP_ENABLED: settings.skipping_enabled,
            MetricTag.REQUIRE_GIT: settings.require_git,
            MetricTag.ITR_ENABLED: settings.itr_enabled,
        }
        self.add_count_metric(MetricName.GIT_REQUESTS_SETTINGS_RESPONSE, 1, tags)


@dataclasses.dataclass
class TelemetryAPIRequestMetrics:
    telemetry_api: TelemetryAPI
    count: str
    duration: str
    response_bytes: t.Optional[str]
    error: str

    def record_request(
        self,
        seconds: float,
        response_bytes: t.Optional[int],
        compressed_response: bool,
        error: t.Optional[ErrorType],
        status_code: t.Optional[int] = None,
    ) -> None:
        self.telemetry_api.add_count_metric(self.count, 1)
        self.telemetry_api.add_distribution_metric(self.duration, seconds * 1000)
        if response_bytes is not None and self.response_bytes is not None:
            # No metric name means the caller does not track response sizes for this request.
            response_tags = {MetricTag.RESPONSE_COMPRESSED: compressed_response}
            self.telemetry_api.add_distribution_metric(self.response_bytes, response_bytes, response_tags)

        if error is not None:
            self.record_error(error, status_code)

    def record_error(self, error: ErrorType, status_code: t.Optional[int] = None) -> None:
        tags = {
            MetricTag.ERROR_TYPE: error,
            MetricTag.STATUS_CODE: status_code if error == ErrorType.STATUS_CODE else None,
        }
        self.telemetry_api.add_count_metric(self.error, 1, tags)
