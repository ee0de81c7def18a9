import logging

from aws_embedded_metrics import metric_scope

_LOGGER = logging.getLogger(__name__)


class MetricsManager:
    """A wrapper for the aws_embedded_metrics library to make it more testable."""

    def __init__(self, namespace: str):
        self._namespace = namespace
        self._metrics: dict[str, tuple[int, str]] = {}

    def put_metric(self, name: str, value: int, unit: str = "Count"):
        """Queues a metric, summing with any value already queued under the same name."""
        previous_value, _ = self._metrics.get(name, (0, unit))
        self._metrics[name] = (previous_value + value, unit)
        _LOGGER.info(f"Queued metric '{name}' with value {value} in namespace '{self._namespace}'")

    def queued_value(self, name: str) -> int:
        return self._metrics.get(name, (0, "Count"))[0]

    @metric_scope
    def flush(self, metrics):
        """Emits all queued metrics to CloudWatch Logs."""
        metrics.set_namespace(self._namespace)
        for name, (value, unit) in self._metrics.items():
            metrics.put_metric(name, value, unit)

        _LOGGER.info(f"Flushed {len(self._metrics)} metrics to namespace '{self._namespace}'.")
        self._metrics = {}
