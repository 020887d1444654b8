import abc
import time
import typing as t

from ddci.internal.telemetry.constants import TELEMETRY_METRIC_TYPE_COUNT
from ddci.internal.telemetry.constants import TELEMETRY_METRIC_TYPE_DISTRIBUTIONS


MetricTagType = t.Optional[t.Tuple[t.Tuple[str, str], ...]]


class Metric(metaclass=abc.ABCMeta):
    """
    Telemetry Metrics are stored in DD dashboards, check the metrics in datadoghq.com/metric/explorer
    """

    metric_type = ""

    def __init__(self, namespace: str, name: str, tags: MetricTagType, common: bool = True) -> None:
        """
        namespace: the scope of the metric, ``civisibility`` for everything in this package
        name: string
        tags: extra information attached to a metric
        common: set to True if a metric is common to all tracers, false if it is python specific
        """
        self.name = name
        self.namespace = namespace
        self.is_common_to_all_tracers = common
        self._tags = tags or ()
        self._points: t.List[t.Any] = []

    @staticmethod
    def get_id(name: str, namespace: str, tags: MetricTagType, metric_type: str) -> int:
        """
        https://www.datadoghq.com/blog/the-power-of-tagged-metrics/#whats-a-metric-tag
        """
        return hash((name, namespace, tags or (), metric_type))

    @property
    def tags(self) -> t.Dict[str, str]:
        return dict(self._tags)

    @abc.abstractmethod
    def add_point(self, value: float = 1.0) -> None:
        """adds timestamped data point associated with a metric"""

    @property
    def value(self) -> t.Any:
        return self._points

    def to_dict(self) -> t.Dict[str, t.Any]:
        """returns a dictionary containing the metrics fields expected by the telemetry intake service"""
        return {
            "metric": self.name,
            "type": self.metric_type,
            "common": self.is_common_to_all_tracers,
            "points": self._points,
            "tags": ["%s:%s" % (k, v) for k, v in self._tags],
        }


class CountMetric(Metric):
    """
    A count type adds up all the submitted values in a time interval. This would be suitable for a
    metric tracking the number of payloads sent, for instance.
    """

    metric_type = TELEMETRY_METRIC_TYPE_COUNT

    def add_point(self, value: float = 1.0) -> None:
        timestamp = time.time()
        if len(self._points) == 0:
            self._points = [[timestamp, float(value)]]
        else:
            self._points[0][1] += float(value)

    @property
    def value(self) -> float:
        return self._points[0][1] if self._points else 0.0


class DistributionMetric(Metric):
    """
    A distribution keeps every submitted value, so percentiles can be computed server side.
    """

    metric_type = TELEMETRY_METRIC_TYPE_DISTRIBUTIONS

    def add_point(self, value: float = 1.0) -> None:
        self._points.append(float(value))

    def to_dict(self) -> t.Dict[str, t.Any]:
        return {
            "metric": self.name,
            "points": self._points,
            "tags": ["%s:%s" % (k, v) for k, v in self._tags],
        }
