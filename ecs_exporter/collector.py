"""
Prometheus collector for ECS task and container metrics.

Every call to collect() is one scrape: the task metadata and the task stats
are fetched fresh from the metadata endpoint, containers are matched to
their stats by Docker ID, and a batch of samples is produced. Nothing is
kept between scrapes.
"""

import logging
import math
import re
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from ecs_exporter.errors import DecodeError, MissingCorrelationError, TransportError
from ecs_exporter.metadata_client import ContainerStats, EcsMetadataClient, TaskMetadata
from ecs_exporter.metrics import CustomLabels, MetricCatalog, MetricDescriptor, ScrapeHealth

logger = logging.getLogger(__name__)

# ECS cpu_stats come from the Docker engine and are in nanoseconds.
NANOSECONDS = 1.0e9
CPU_IN_1_VCPU = 1024
BYTES_IN_MIB = 1024 * 1024

TIMESTAMP_RE = re.compile(
    r'([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2}):([0-9]{2}):([0-9]{2})(?:\.([0-9]{1,9}))?Z'
)
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
MIN_DURATION_NS = -(2 ** 63)
MAX_DURATION_NS = 2 ** 63 - 1


def parse_timestamp_ns(value: str) -> int:
    """
    Parse an RFC 3339 UTC timestamp with up to nanosecond precision.

    Returns:
        Nanoseconds elapsed since 0001-01-01T00:00:00Z.

    Raises:
        ValueError: if the value is not such a timestamp.
    """
    match = TIMESTAMP_RE.fullmatch(value)
    if not match:
        raise ValueError(f"unsupported timestamp format: {value!r}")

    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    fraction = match.group(7) or ''
    moment = datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    seconds = (moment - ZERO_TIME) // timedelta(seconds=1)
    return seconds * 1_000_000_000 + int(fraction.ljust(9, '0'))


def _timestamp_or_zero(value: str) -> int:
    try:
        return parse_timestamp_ns(value)
    except ValueError as e:
        logger.debug(f"Treating unparseable stats timestamp as zero time: {e}")
        return 0


def elapsed_ns(read: str, preread: str) -> int:
    """
    Nanoseconds between the ``preread`` and ``read`` timestamps.

    An unparseable timestamp counts as the zero time and the result is
    clamped to the signed 64-bit range.
    """
    delta = _timestamp_or_zero(read) - _timestamp_or_zero(preread)
    return max(MIN_DURATION_NS, min(MAX_DURATION_NS, delta))


def cpu_utilization(stats: ContainerStats) -> float:
    """
    CPU used between the two snapshots, in 1024ths of a vCPU.

    A zero interval gives an IEEE result (inf, or nan for 0/0) rather than
    raising.
    """
    cpu_delta = stats.cpu_stats.cpu_usage.total_usage - stats.precpu_stats.cpu_usage.total_usage
    interval = elapsed_ns(stats.read, stats.preread)
    if interval == 0:
        if cpu_delta == 0:
            return math.nan
        return math.copysign(math.inf, cpu_delta)
    return (cpu_delta / interval) * CPU_IN_1_VCPU


class _SampleBatch:
    """Metric families of one scrape, created on first use."""

    def __init__(self):
        self._families: Dict[str, object] = {}

    def add(self, descriptor: MetricDescriptor, label_values: List[str], value: float):
        if len(label_values) != len(descriptor.labels):
            logger.error(
                f"Skipping {descriptor.name} sample: {len(label_values)} label values for {len(descriptor.labels)} labels"
            )
            return
        family = self._families.get(descriptor.name)
        if family is None:
            family = self._families[descriptor.name] = descriptor.new_family()
        family.add_metric(label_values, value)

    def families(self) -> list:
        return list(self._families.values())


class EcsCollector:
    """Collects ECS task and container metrics from the task metadata endpoint."""

    def __init__(
        self,
        client: EcsMetadataClient,
        custom_labels: CustomLabels = None,
        timeout: Optional[float] = None,
        health: Optional[ScrapeHealth] = None
    ):
        """
        Initialize the collector.

        Args:
            client: Metadata endpoint client.
            custom_labels: Extra labels added to every sample, as a mapping
                or an ordered sequence of (name, value) pairs.
            timeout: Per-request timeout for the upstream fetches of one scrape.
            health: Optional exporter health metrics to update.
        """
        self.client = client
        self.catalog = MetricCatalog.build(custom_labels)
        self.timeout = timeout
        self.health = health

    def describe(self):
        """Yield every metric family without samples."""
        for descriptor in self.catalog.descriptors():
            yield descriptor.new_family()

    def collect(self):
        """Scrape the metadata endpoint and yield the resulting metric families."""
        start_time = time.time()
        batch = _SampleBatch()
        try:
            self._collect_into(batch)
        finally:
            if self.health is not None:
                self.health.scrape_duration_seconds.set(time.time() - start_time)
        yield from batch.families()

    def _collect_into(self, batch: _SampleBatch):
        catalog = self.catalog
        custom_values = list(catalog.custom_label_values)

        try:
            metadata = self.client.retrieve_task_metadata(timeout=self.timeout)
        except (TransportError, DecodeError) as e:
            logger.error(f"Failed to retrieve metadata: {e}")
            self._record_error('metadata')
            return

        batch.add(catalog.metadata, self._metadata_label_values(metadata) + custom_values, 1.0)

        svc_label_values = [metadata.task_arn, metadata.task_id] + custom_values
        batch.add(catalog.svc_cpu_limit, svc_label_values, metadata.limits.cpu * CPU_IN_1_VCPU)
        batch.add(catalog.svc_memory_limit, svc_label_values, metadata.limits.memory)

        try:
            stats = self.client.retrieve_task_stats(timeout=self.timeout)
        except (TransportError, DecodeError) as e:
            logger.error(f"Failed to retrieve container stats: {e}")
            self._record_error('stats')
            return

        for container in metadata.containers:
            container_stats = stats.get(container.docker_id)
            if container_stats is None:
                logger.warning(str(MissingCorrelationError(container.docker_id)))
                self._record_error('missing_stats')
                continue

            label_values = [container.name, metadata.task_id] + custom_values
            self._add_container_samples(batch, label_values, container_stats)

    @staticmethod
    def _metadata_label_values(metadata: TaskMetadata) -> List[str]:
        return [
            metadata.cluster,
            metadata.task_arn,
            metadata.family,
            metadata.revision,
            metadata.desired_status,
            metadata.known_status,
            metadata.pull_started_at,
            metadata.pull_stopped_at,
            metadata.availability_zone,
            metadata.launch_type,
            metadata.task_id,
        ]

    def _add_container_samples(self, batch: _SampleBatch, label_values: List[str], stats: ContainerStats):
        catalog = self.catalog

        # CPU
        batch.add(catalog.cpu_utilized, label_values, cpu_utilization(stats))
        for index, usage in enumerate(stats.cpu_stats.cpu_usage.percpu_usage):
            batch.add(catalog.cpu_total, label_values + [str(index)], usage / NANOSECONDS)

        # Memory; utilization is only known when the cache size is reported
        memory = stats.memory_stats
        cache = memory.stats.get('cache')
        if cache is not None:
            batch.add(catalog.memory_utilized, label_values, (memory.usage - cache) / BYTES_IN_MIB)

        for descriptor, value in self._memory_values(memory.usage, memory.limit, cache or 0):
            batch.add(descriptor, label_values, value)

        # Network, per interface
        for interface, counters in stats.networks.items():
            network_label_values = label_values + [interface]
            values = (
                counters.rx_bytes,
                counters.rx_packets,
                counters.rx_dropped,
                counters.rx_errors,
                counters.tx_bytes,
                counters.tx_packets,
                counters.tx_dropped,
                counters.tx_errors,
            )
            for descriptor, value in zip(catalog.network_descriptors(), values):
                batch.add(descriptor, network_label_values, value)

    def _memory_values(self, usage: int, limit: int, cache: int) -> Tuple[Tuple[MetricDescriptor, float], ...]:
        return (
            (self.catalog.memory_usage, float(usage)),
            (self.catalog.memory_limit, float(limit)),
            (self.catalog.memory_cache_usage, float(cache)),
        )

    def _record_error(self, error_type: str):
        if self.health is not None:
            self.health.record_error(error_type)
