from collections import defaultdict
import threading
import typing as t

from ddci.internal.telemetry.constants import TELEMETRY_TYPE_DISTRIBUTION
from ddci.internal.telemetry.constants import TELEMETRY_TYPE_GENERATE_METRICS
from ddci.internal.telemetry.metrics import DistributionMetric
from ddci.internal.telemetry.metrics import Metric
from ddci.internal.telemetry.metrics import MetricTagType


NamespaceMetricType = t.Dict[str, t.Dict[str, t.Dict[int, Metric]]]


class MetricNamespace:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._metrics_data: NamespaceMetricType = self._empty()

    @staticmethod
    def _empty() -> NamespaceMetricType:
        return {
            TELEMETRY_TYPE_GENERATE_METRICS: defaultdict(dict),
            TELEMETRY_TYPE_DISTRIBUTION: defaultdict(dict),
        }

    def flush(self) -> NamespaceMetricType:
        with self._lock:
            namespace_metrics = self._metrics_data
            self._metrics_data = self._empty()
            return namespace_metrics

    def peek(self, metrics_type_payload: str, namespace: str) -> t.List[Metric]:
        with self._lock:
            return list(self._metrics_data[metrics_type_payload][namespace].values())

    def add_metric(
        self,
        metric_class: t.Type[Metric],
        namespace: str,
        name: str,
        value: float = 1.0,
        tags: MetricTagType = None,
    ) -> None:
        """
        Telemetry Metrics are stored in DD dashboards, check the metrics in datadoghq.com/metric/explorer.
        The metric will store in dashboard as "dd.instrumentation_telemetry_data." + namespace + "." + name
        """
        metric_id = Metric.get_id(name, namespace, tags, metric_class.metric_type)
        if metric_class is DistributionMetric:
            metrics_type_payload = TELEMETRY_TYPE_DISTRIBUTION
        else:
            metrics_type_payload = TELEMETRY_TYPE_GENERATE_METRICS

        with self._lock:
            existing_metric = self._metrics_data[metrics_type_payload][namespace].get(metric_id)
            if existing_metric:
                existing_metric.add_point(value)
            else:
                new_metric = metric_class(namespace, name, tags=tags, common=True)
                new_metric.add_point(value)
                self._metrics_data[metrics_type_payload][namespace][metric_id] = new_metric
