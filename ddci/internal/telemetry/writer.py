import typing as t

from ddci.internal.constants import DEFAULT_TELEMETRY_HEARTBEAT_INTERVAL_SECONDS
from ddci.internal.logger import get_logger
from ddci.internal.periodic import PeriodicService
from ddci.internal.periodic import ServiceStatus
from ddci.internal.telemetry.constants import TELEMETRY_TYPE_DISTRIBUTION
from ddci.internal.telemetry.constants import TELEMETRY_TYPE_GENERATE_METRICS
from ddci.internal.telemetry.metrics import CountMetric
from ddci.internal.telemetry.metrics import DistributionMetric
from ddci.internal.telemetry.metrics import MetricTagType
from ddci.internal.telemetry.metrics_namespaces import MetricNamespace


log = get_logger(__name__)

TelemetrySeries = t.Dict[str, t.Dict[str, t.List[t.Dict[str, t.Any]]]]


class TelemetrySender(t.Protocol):
    def send(self, series: TelemetrySeries) -> t.Any:
        ...


class TelemetryWriter(PeriodicService):
    """
    Collects count and distribution metrics in process and periodically hands them to a sender.

    Metrics are grouped by namespace, name and tags. Every tick drains the store, so it only ever holds one collection
    window. Without a sender the drained series are logged at debug level and discarded.
    """

    def __init__(
        self,
        enabled: bool = True,
        interval: float = DEFAULT_TELEMETRY_HEARTBEAT_INTERVAL_SECONDS,
        sender: t.Optional[TelemetrySender] = None,
    ) -> None:
        super(TelemetryWriter, self).__init__(interval=interval)
        self._enabled = enabled
        self._namespace = MetricNamespace()
        self._sender = sender

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        """Disable collection and drop the metrics accumulated so far."""
        self._enabled = False
        self._namespace.flush()

    def configure(self, sender: t.Optional[TelemetrySender], interval: t.Optional[float] = None) -> None:
        """Set where drained series go and, before the service starts, how often it drains."""
        self._sender = sender
        if interval is not None:
            self._interval = interval

    def add_count_metric(self, namespace: str, name: str, value: float = 1, tags: MetricTagType = None) -> None:
        """
        Queues count metric
        """
        if self._enabled:
            self._namespace.add_metric(CountMetric, namespace, str(name), value, tags)

    def add_distribution_metric(self, namespace: str, name: str, value: float, tags: MetricTagType = None) -> None:
        """
        Queues distributions metric
        """
        if self._enabled:
            self._namespace.add_metric(DistributionMetric, namespace, str(name), value, tags)

    def get_count_metrics(self, namespace: str) -> t.List[CountMetric]:
        return t.cast(t.List[CountMetric], self._namespace.peek(TELEMETRY_TYPE_GENERATE_METRICS, namespace))

    def get_distribution_metrics(self, namespace: str) -> t.List[DistributionMetric]:
        return t.cast(t.List[DistributionMetric], self._namespace.peek(TELEMETRY_TYPE_DISTRIBUTION, namespace))

    def flush(self) -> TelemetrySeries:
        """Return the accumulated series as telemetry payload dictionaries and reset the store."""
        payload: TelemetrySeries = {}
        for payload_type, namespaces in self._namespace.flush().items():
            for namespace, metrics in namespaces.items():
                if metrics:
                    payload.setdefault(payload_type, {})[namespace] = [m.to_dict() for m in metrics.values()]

        if payload:
            log.debug("Flushing telemetry metrics: %r", payload)
        return payload

    def periodic(self) -> None:
        series = self.flush()
        if series and self._sender is not None:
            try:
                self._sender.send(series)
            except Exception:
                log.debug("Error sending telemetry metrics", exc_info=True)

    def on_shutdown(self) -> None:
        self.periodic()

    def shutdown(self, timeout: t.Optional[float] = None) -> None:
        """Send the last collection window and stop the periodic thread."""
        if self.status == ServiceStatus.RUNNING:
            self.stop()
            self.join(timeout)
        else:
            self.periodic()


telemetry_writer = TelemetryWriter()
