"""OpenTelemetry metrics instruments for calendar reconciliation runs.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around.

Initialization
--------------
Call ``init_metrics(service_name)`` once during application startup
(alongside ``init_telemetry``).  When OTEL_EXPORTER_OTLP_ENDPOINT is not set,
the global no-op MeterProvider is used and all recordings are silent.

Instruments
-----------
  matterflow.calendar_sync.runs_total         Counter  (label: status)
      Reconciliation runs by final status
      (completed | not_connected | failed | busy).

  matterflow.calendar_sync.items_total        Counter  (labels: direction, outcome)
      Items handled per direction (pull | push) and outcome
      (``ok`` or ``error``).

  matterflow.calendar_sync.run_duration_ms    Histogram
      Wall-clock duration of a run in milliseconds.

All instruments carry an ``account`` label.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "matterflow"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a real MeterProvider
    with a periodic OTLP gRPC exporter.  Otherwise the global no-op provider
    stays in place.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint), export_interval_millis=15_000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    """Return a Meter from the current global provider (no-op before init)."""
    return metrics.get_meter(_METER_NAME)


def _runs_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="matterflow.calendar_sync.runs_total",
        description="Calendar reconciliation runs by final status",
        unit="runs",
    )


def _items_total() -> metrics.Counter:
    return get_meter().create_counter(
        name="matterflow.calendar_sync.items_total",
        description="Calendar items handled per direction and outcome",
        unit="items",
    )


def _run_duration_ms() -> metrics.Histogram:
    return get_meter().create_histogram(
        name="matterflow.calendar_sync.run_duration_ms",
        description="Wall-clock duration of a calendar reconciliation run",
        unit="ms",
    )


class SyncMetrics:
    """Lazily-instrumented recorder for one account's reconciliation runs.

    Safe to construct before ``init_metrics``; recordings are no-ops until a
    real provider is installed.
    """

    def __init__(self, account_id: str) -> None:
        self._attrs = {"account": account_id}
        self.__runs: metrics.Counter | None = None
        self.__items: metrics.Counter | None = None
        self.__duration: metrics.Histogram | None = None

    @property
    def _runs(self) -> metrics.Counter:
        if self.__runs is None:
            self.__runs = _runs_total()
        return self.__runs

    @property
    def _items(self) -> metrics.Counter:
        if self.__items is None:
            self.__items = _items_total()
        return self.__items

    @property
    def _duration(self) -> metrics.Histogram:
        if self.__duration is None:
            self.__duration = _run_duration_ms()
        return self.__duration

    def record_run(self, status: str, duration_ms: float) -> None:
        """Record a finished run and its duration."""
        self._runs.add(1, {**self._attrs, "status": status})
        self._duration.record(duration_ms, self._attrs)

    def record_items(self, direction: str, outcome: str, count: int = 1) -> None:
        if count <= 0:
            return
        self._items.add(count, {**self._attrs, "direction": direction, "outcome": outcome})
