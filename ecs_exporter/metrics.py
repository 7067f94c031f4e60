"""
Prometheus metric definitions for ECS task and container statistics.

The ECS metrics are described by an immutable MetricCatalog built once per
collector, since their label sets depend on the custom labels the exporter
was started with. The exporter's own health metrics are regular
prometheus_client metrics.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple, Union

from prometheus_client import CollectorRegistry, Counter, Gauge
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from ecs_exporter.errors import ConfigurationError

LabelPairs = Tuple[Tuple[str, str], ...]
CustomLabels = Union[Mapping[str, str], Iterable[Tuple[str, str]], None]

GAUGE = 'gauge'
COUNTER = 'counter'

LABEL_NAME_RE = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')

METADATA_LABELS = (
    'cluster',
    'task_arn',
    'family',
    'revision',
    'desired_status',
    'known_status',
    'pull_started_at',
    'pull_stopped_at',
    'availability_zone',
    'launch_type',
    'task_id',
)
SVC_LABELS = ('task_arn', 'task_id')
CONTAINER_LABELS = ('container', 'task_id')
NETWORK_LABEL = 'device'
CPU_LABEL = 'cpu'

RESERVED_LABELS = frozenset(METADATA_LABELS + SVC_LABELS + CONTAINER_LABELS + (NETWORK_LABEL, CPU_LABEL))


@dataclass(frozen=True)
class MetricDescriptor:
    """Name, help text, type and label names of one metric."""
    name: str
    documentation: str
    type: str
    labels: Tuple[str, ...]

    def new_family(self):
        """Create an empty metric family to add samples to."""
        if self.type == COUNTER:
            return CounterMetricFamily(self.name, self.documentation, labels=self.labels)
        return GaugeMetricFamily(self.name, self.documentation, labels=self.labels)


def normalize_custom_labels(custom_labels: CustomLabels) -> LabelPairs:
    """
    Turn custom labels into an ordered tuple of (name, value) pairs.

    A mapping keeps its iteration order. Label names must be valid
    Prometheus label names and must not shadow a built-in label.

    Raises:
        ConfigurationError: on an invalid, reserved or repeated name.
    """
    if custom_labels is None:
        return ()

    items = custom_labels.items() if isinstance(custom_labels, Mapping) else custom_labels
    pairs = []
    seen = set()
    for name, value in items:
        if not LABEL_NAME_RE.match(name) or name.startswith('__'):
            raise ConfigurationError(f"invalid custom label name: {name!r}")
        if name in RESERVED_LABELS:
            raise ConfigurationError(f"custom label {name!r} clashes with a built-in label")
        if name in seen:
            raise ConfigurationError(f"custom label {name!r} given more than once")
        seen.add(name)
        pairs.append((name, str(value)))
    return tuple(pairs)


@dataclass(frozen=True)
class MetricCatalog:
    """
    Descriptors of every metric the ECS collector emits.

    Custom label names are appended to every label set, after the fixed
    names and before the per-interface/per-core label. Names and values are
    both taken from ``custom_labels`` so they stay index-aligned.
    """
    custom_labels: LabelPairs

    metadata: MetricDescriptor
    svc_cpu_limit: MetricDescriptor
    svc_memory_limit: MetricDescriptor
    cpu_total: MetricDescriptor
    cpu_utilized: MetricDescriptor
    memory_utilized: MetricDescriptor
    memory_usage: MetricDescriptor
    memory_limit: MetricDescriptor
    memory_cache_usage: MetricDescriptor
    network_rx_bytes: MetricDescriptor
    network_rx_packets: MetricDescriptor
    network_rx_dropped: MetricDescriptor
    network_rx_errors: MetricDescriptor
    network_tx_bytes: MetricDescriptor
    network_tx_packets: MetricDescriptor
    network_tx_dropped: MetricDescriptor
    network_tx_errors: MetricDescriptor

    @classmethod
    def build(cls, custom_labels: CustomLabels = None) -> 'MetricCatalog':
        pairs = normalize_custom_labels(custom_labels)
        custom_names = tuple(name for name, _ in pairs)

        metadata_labels = METADATA_LABELS + custom_names
        svc_labels = SVC_LABELS + custom_names
        labels = CONTAINER_LABELS + custom_names
        network_labels = labels + (NETWORK_LABEL,)
        cpu_labels = labels + (CPU_LABEL,)

        return cls(
            custom_labels=pairs,
            metadata=MetricDescriptor(
                'ecs_metadata_info', 'ECS service metadata.', GAUGE, metadata_labels),
            svc_cpu_limit=MetricDescriptor(
                'ecs_svc_cpu_limit', 'Total CPU Limit. (1 unit = 1/1024th of a vCPU)', GAUGE, svc_labels),
            svc_memory_limit=MetricDescriptor(
                'ecs_svc_memory_limit_bytes', 'Total MEM Limit in bytes.', GAUGE, svc_labels),
            cpu_total=MetricDescriptor(
                'ecs_cpu_seconds_total', 'Total CPU usage in seconds.', COUNTER, cpu_labels),
            cpu_utilized=MetricDescriptor(
                'ecs_cpu_utilized', 'Total CPU usage. (1 unit = 1/1024th of a vCPU)', GAUGE, labels),
            memory_utilized=MetricDescriptor(
                'ecs_memory_utilized_mega_bytes', 'Total memory utilized in MB.', GAUGE, labels),
            memory_usage=MetricDescriptor(
                'ecs_memory_bytes', 'Memory usage in bytes.', GAUGE, labels),
            memory_limit=MetricDescriptor(
                'ecs_memory_limit_bytes', 'Memory limit in bytes.', GAUGE, labels),
            memory_cache_usage=MetricDescriptor(
                'ecs_memory_cache_usage', 'Memory cache usage in bytes.', GAUGE, labels),
            network_rx_bytes=MetricDescriptor(
                'ecs_network_receive_bytes_total', 'Network received in bytes.', COUNTER, network_labels),
            network_rx_packets=MetricDescriptor(
                'ecs_network_receive_packets_total', 'Network packets received.', COUNTER, network_labels),
            network_rx_dropped=MetricDescriptor(
                'ecs_network_receive_dropped_total', 'Network packets dropped in receiving.', COUNTER,
                network_labels),
            network_rx_errors=MetricDescriptor(
                'ecs_network_receive_errors_total', 'Network errors in receiving.', COUNTER, network_labels),
            network_tx_bytes=MetricDescriptor(
                'ecs_network_transmit_bytes_total', 'Network transmitted in bytes.', COUNTER, network_labels),
            network_tx_packets=MetricDescriptor(
                'ecs_network_transmit_packets_total', 'Network packets transmitted.', COUNTER, network_labels),
            network_tx_dropped=MetricDescriptor(
                'ecs_network_transmit_dropped_total', 'Network packets dropped in transmit.', COUNTER,
                network_labels),
            network_tx_errors=MetricDescriptor(
                'ecs_network_transmit_errors_total', 'Network errors in transmit.', COUNTER, network_labels),
        )

    @property
    def custom_label_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.custom_labels)

    @property
    def custom_label_values(self) -> Tuple[str, ...]:
        return tuple(value for _, value in self.custom_labels)

    def descriptors(self) -> Tuple[MetricDescriptor, ...]:
        """All descriptors, in emission order."""
        return (
            self.metadata,
            self.svc_cpu_limit,
            self.svc_memory_limit,
            self.cpu_utilized,
            self.cpu_total,
            self.memory_utilized,
            self.memory_usage,
            self.memory_limit,
            self.memory_cache_usage,
        ) + self.network_descriptors()

    def network_descriptors(self) -> Tuple[MetricDescriptor, ...]:
        """The eight per-interface counters."""
        return (
            self.network_rx_bytes,
            self.network_rx_packets,
            self.network_rx_dropped,
            self.network_rx_errors,
            self.network_tx_bytes,
            self.network_tx_packets,
            self.network_tx_dropped,
            self.network_tx_errors,
        )


class ScrapeHealth:
    """
    Exporter health metrics, updated on every scrape.

    Registered only when the exporter exposes its own metrics; with
    ``registry=None`` the metrics are still updated but never exported.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.scrape_duration_seconds = Gauge(
            'ecs_exporter_scrape_duration_seconds',
            'Time taken to scrape the ECS metadata endpoint',
            registry=registry
        )
        self.scrape_errors_total = Counter(
            'ecs_exporter_scrape_errors_total',
            'Total number of scrape errors',
            ['error_type'],
            registry=registry
        )

    def record_error(self, error_type: str):
        self.scrape_errors_total.labels(error_type=error_type).inc()
