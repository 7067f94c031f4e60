"""
ECS task metadata endpoint client.

This module wraps the ECS task metadata endpoint (v4) and decodes its two
documents, the task metadata and the per-container stats, into typed
objects the collector can work with.

Example:
    client = EcsMetadataClient.from_environment()
    metadata = client.retrieve_task_metadata()
    stats = client.retrieve_task_stats()
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from ecs_exporter.errors import ConfigurationError, DecodeError, TransportError

logger = logging.getLogger(__name__)

ENDPOINT_ENV = "ECS_CONTAINER_METADATA_URI_V4"
DEFAULT_TIMEOUT = 10.0
MAX_UINT64 = 2 ** 64 - 1


# =============================================================================
# Field decoding helpers
# =============================================================================
# Missing or null fields decode to their zero value; a present field of the
# wrong JSON type is an error.

def _string(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"field {key!r}: expected string, got {type(value).__name__}")
    return value


def _number(data: Dict[str, Any], key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"field {key!r}: expected number, got {type(value).__name__}")
    try:
        return float(value)
    except OverflowError:
        raise TypeError(f"field {key!r}: number out of range")


def _is_uint64(value: Any) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and 0 <= value <= MAX_UINT64


def _integer(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if not _is_uint64(value):
        raise TypeError(f"field {key!r}: expected unsigned 64-bit integer")
    return value


def _mapping(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise TypeError(f"field {key!r}: expected object, got {type(value).__name__}")
    return value


def _sequence(data: Dict[str, Any], key: str) -> List[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"field {key!r}: expected array, got {type(value).__name__}")
    return value


def _strings(data: Dict[str, Any], key: str) -> List[str]:
    values = _sequence(data, key)
    for value in values:
        if not isinstance(value, str):
            raise TypeError(f"field {key!r}: expected array of strings")
    return list(values)


def _object(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise TypeError(f"{what}: expected object, got {type(value).__name__}")
    return value


def task_id_from_arn(task_arn: str) -> str:
    """Return the last '/'-separated segment of a task ARN."""
    return task_arn.split("/")[-1]


# =============================================================================
# Task metadata document (GET <endpoint>/task)
# =============================================================================

@dataclass
class TaskLimits:
    """Task-level resource limits."""
    cpu: float = 0.0
    memory: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskLimits':
        return cls(cpu=_number(data, "CPU"), memory=_number(data, "Memory"))


@dataclass
class ContainerNetwork:
    """Network attachment of a container."""
    network_mode: str = ""
    ipv4_addresses: List[str] = field(default_factory=list)
    ipv6_addresses: List[str] = field(default_factory=list)
    attachment_index: float = 0.0
    mac_address: str = ""
    ipv4_subnet_cidr_block: str = ""
    ipv6_subnet_cidr_block: str = ""
    domain_name_servers: List[str] = field(default_factory=list)
    domain_name_search_list: List[str] = field(default_factory=list)
    private_dns_name: str = ""
    subnet_gateway_ipv4_address: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContainerNetwork':
        return cls(
            network_mode=_string(data, "NetworkMode"),
            ipv4_addresses=_strings(data, "IPv4Addresses"),
            ipv6_addresses=_strings(data, "IPv6Addresses"),
            attachment_index=_number(data, "AttachmentIndex"),
            mac_address=_string(data, "MACAddress"),
            ipv4_subnet_cidr_block=_string(data, "IPv4SubnetCIDRBlock"),
            ipv6_subnet_cidr_block=_string(data, "IPv6SubnetCIDRBlock"),
            domain_name_servers=_strings(data, "DomainNameServers"),
            domain_name_search_list=_strings(data, "DomainNameSearchList"),
            private_dns_name=_string(data, "PrivateDNSName"),
            subnet_gateway_ipv4_address=_string(data, "SubnetGatewayIpv4Address"),
        )


@dataclass
class ClockDrift:
    """Clock synchronization status reported for a container."""
    clock_error_bound: float = 0.0
    reference_timestamp: str = ""
    clock_synchronization_status: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClockDrift':
        return cls(
            clock_error_bound=_number(data, "ClockErrorBound"),
            reference_timestamp=_string(data, "ReferenceTimestamp"),
            clock_synchronization_status=_string(data, "ClockSynchronizationStatus"),
        )


@dataclass
class Container:
    """A container of the task. ``docker_id`` is the key into the stats document."""
    docker_id: str = ""
    name: str = ""
    docker_name: str = ""
    image: str = ""
    image_id: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    desired_status: str = ""
    known_status: str = ""
    created_at: str = ""
    started_at: str = ""
    type: str = ""
    networks: List[ContainerNetwork] = field(default_factory=list)
    clock_drift: List[ClockDrift] = field(default_factory=list)
    container_arn: str = ""
    log_driver: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Container':
        labels = _mapping(data, "Labels")
        for key, value in labels.items():
            if not isinstance(value, str):
                raise TypeError(f"label {key!r}: expected string, got {type(value).__name__}")

        return cls(
            docker_id=_string(data, "DockerId"),
            name=_string(data, "Name"),
            docker_name=_string(data, "DockerName"),
            image=_string(data, "Image"),
            image_id=_string(data, "ImageID"),
            labels=dict(labels),
            desired_status=_string(data, "DesiredStatus"),
            known_status=_string(data, "KnownStatus"),
            created_at=_string(data, "CreatedAt"),
            started_at=_string(data, "StartedAt"),
            type=_string(data, "Type"),
            networks=[
                ContainerNetwork.from_dict(_object(item, "Networks entry"))
                for item in _sequence(data, "Networks")
            ],
            clock_drift=[
                ClockDrift.from_dict(_object(item, "ClockDrift entry"))
                for item in _sequence(data, "ClockDrift")
            ],
            container_arn=_string(data, "ContainerARN"),
            log_driver=_string(data, "LogDriver"),
        )


@dataclass
class TaskMetadata:
    """Task metadata document. ``task_id`` is derived from ``task_arn``."""
    cluster: str = ""
    task_arn: str = ""
    task_id: str = ""
    family: str = ""
    revision: str = ""
    desired_status: str = ""
    known_status: str = ""
    limits: TaskLimits = field(default_factory=TaskLimits)
    pull_started_at: str = ""
    pull_stopped_at: str = ""
    availability_zone: str = ""
    launch_type: str = ""
    containers: List[Container] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TaskMetadata':
        metadata = cls(
            cluster=_string(data, "Cluster"),
            task_arn=_string(data, "TaskARN"),
            family=_string(data, "Family"),
            revision=_string(data, "Revision"),
            desired_status=_string(data, "DesiredStatus"),
            known_status=_string(data, "KnownStatus"),
            limits=TaskLimits.from_dict(_mapping(data, "Limits")),
            pull_started_at=_string(data, "PullStartedAt"),
            pull_stopped_at=_string(data, "PullStoppedAt"),
            availability_zone=_string(data, "AvailabilityZone"),
            launch_type=_string(data, "LaunchType"),
            containers=[
                Container.from_dict(_object(item, "Containers entry"))
                for item in _sequence(data, "Containers")
            ],
        )
        metadata.set_task_id()
        return metadata

    def set_task_id(self) -> None:
        """Derive the short task ID from the task ARN."""
        self.task_id = task_id_from_arn(self.task_arn)


# =============================================================================
# Task stats document (GET <endpoint>/task/stats)
# =============================================================================
# CPU values are cumulative nanoseconds as reported by the Docker engine.

@dataclass
class CPUUsage:
    total_usage: int = 0
    percpu_usage: List[int] = field(default_factory=list)
    usage_in_kernelmode: int = 0
    usage_in_usermode: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CPUUsage':
        percpu = _sequence(data, "percpu_usage")
        for value in percpu:
            if not _is_uint64(value):
                raise TypeError("field 'percpu_usage': expected array of unsigned 64-bit integers")

        return cls(
            total_usage=_integer(data, "total_usage"),
            percpu_usage=list(percpu),
            usage_in_kernelmode=_integer(data, "usage_in_kernelmode"),
            usage_in_usermode=_integer(data, "usage_in_usermode"),
        )


@dataclass
class CPUStats:
    cpu_usage: CPUUsage = field(default_factory=CPUUsage)
    system_cpu_usage: int = 0
    online_cpus: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CPUStats':
        return cls(
            cpu_usage=CPUUsage.from_dict(_mapping(data, "cpu_usage")),
            system_cpu_usage=_integer(data, "system_cpu_usage"),
            online_cpus=_integer(data, "online_cpus"),
        )


@dataclass
class MemoryStats:
    usage: int = 0
    max_usage: int = 0
    limit: int = 0
    failcnt: int = 0
    stats: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MemoryStats':
        breakdown = _mapping(data, "stats")
        for key, value in breakdown.items():
            if not _is_uint64(value):
                raise TypeError(f"memory stat {key!r}: expected unsigned 64-bit integer")

        return cls(
            usage=_integer(data, "usage"),
            max_usage=_integer(data, "max_usage"),
            limit=_integer(data, "limit"),
            failcnt=_integer(data, "failcnt"),
            stats=dict(breakdown),
        )


@dataclass
class NetworkStats:
    """Counters of one network interface."""
    rx_bytes: float = 0.0
    rx_packets: float = 0.0
    rx_errors: float = 0.0
    rx_dropped: float = 0.0
    tx_bytes: float = 0.0
    tx_packets: float = 0.0
    tx_errors: float = 0.0
    tx_dropped: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NetworkStats':
        return cls(
            rx_bytes=_number(data, "rx_bytes"),
            rx_packets=_number(data, "rx_packets"),
            rx_errors=_number(data, "rx_errors"),
            rx_dropped=_number(data, "rx_dropped"),
            tx_bytes=_number(data, "tx_bytes"),
            tx_packets=_number(data, "tx_packets"),
            tx_errors=_number(data, "tx_errors"),
            tx_dropped=_number(data, "tx_dropped"),
        )


@dataclass
class NetworkRateStats:
    rx_bytes_per_sec: float = 0.0
    tx_bytes_per_sec: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NetworkRateStats':
        return cls(
            rx_bytes_per_sec=_number(data, "rx_bytes_per_sec"),
            tx_bytes_per_sec=_number(data, "tx_bytes_per_sec"),
        )


@dataclass
class ContainerStats:
    """
    Stats of one container.

    ``read`` and ``preread`` are the times at which ``cpu_stats`` and
    ``precpu_stats`` were sampled.
    """
    name: str = ""
    id: str = ""
    num_procs: float = 0.0
    read: str = ""
    preread: str = ""
    cpu_stats: CPUStats = field(default_factory=CPUStats)
    precpu_stats: CPUStats = field(default_factory=CPUStats)
    memory_stats: MemoryStats = field(default_factory=MemoryStats)
    networks: Dict[str, NetworkStats] = field(default_factory=dict)
    network_rate_stats: NetworkRateStats = field(default_factory=NetworkRateStats)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContainerStats':
        return cls(
            name=_string(data, "name"),
            id=_string(data, "id"),
            num_procs=_number(data, "num_procs"),
            read=_string(data, "read"),
            preread=_string(data, "preread"),
            cpu_stats=CPUStats.from_dict(_mapping(data, "cpu_stats")),
            precpu_stats=CPUStats.from_dict(_mapping(data, "precpu_stats")),
            memory_stats=MemoryStats.from_dict(_mapping(data, "memory_stats")),
            networks={
                interface: NetworkStats.from_dict(_object(counters, f"network {interface!r}"))
                for interface, counters in _mapping(data, "networks").items()
            },
            network_rate_stats=NetworkRateStats.from_dict(_mapping(data, "network_rate_stats")),
        )


# =============================================================================
# Client
# =============================================================================

class EcsMetadataClient:
    """Fetches task metadata and container stats from the ECS metadata endpoint."""

    def __init__(
        self,
        endpoint: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT
    ):
        """
        Initialize the client.

        Args:
            endpoint: Base URL of the metadata endpoint.
            session: Optional requests session to issue requests with.
            timeout: Default per-request timeout in seconds.
        """
        self.endpoint = endpoint.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_environment(cls, **kwargs) -> 'EcsMetadataClient':
        """
        Create a client whose endpoint is read from ECS_CONTAINER_METADATA_URI_V4.

        Raises:
            ConfigurationError: if the variable is unset or is not a URL.
        """
        endpoint = os.environ.get(ENDPOINT_ENV, "")
        if not endpoint:
            raise ConfigurationError(
                f"{ENDPOINT_ENV!r} environmental variable is not set; not running on ECS"
            )

        try:
            parsed = urlparse(endpoint)
        except ValueError as e:
            raise ConfigurationError(f"can't parse {ENDPOINT_ENV!r} as URL: {e}") from e
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"can't parse {ENDPOINT_ENV!r} as URL: {endpoint!r}")

        return cls(endpoint, **kwargs)

    def retrieve_task_metadata(self, timeout: Optional[float] = None) -> TaskMetadata:
        """
        Fetch and decode the task metadata document.

        Raises:
            TransportError: if the endpoint cannot be reached.
            DecodeError: if the response is not a task metadata document.
        """
        data = self._request("/task", timeout)
        try:
            return TaskMetadata.from_dict(_object(data, "task metadata"))
        except (TypeError, ValueError) as e:
            raise DecodeError(f"invalid task metadata: {e}") from e

    def retrieve_task_stats(self, timeout: Optional[float] = None) -> Dict[str, Optional[ContainerStats]]:
        """
        Fetch and decode the task stats document.

        Returns:
            Mapping of Docker container ID to stats. Entries the endpoint
            reports as null are kept as None.

        Raises:
            TransportError: if the endpoint cannot be reached.
            DecodeError: if the response is not a task stats document.
        """
        data = self._request("/task/stats", timeout)
        try:
            return {
                docker_id: None if entry is None else ContainerStats.from_dict(
                    _object(entry, f"stats of {docker_id!r}")
                )
                for docker_id, entry in _object(data, "task stats").items()
            }
        except (TypeError, ValueError) as e:
            raise DecodeError(f"invalid task stats: {e}") from e

    def _request(self, path: str, timeout: Optional[float]) -> Any:
        url = self.endpoint + path
        logger.debug(f"GET {url}")

        try:
            response = self.session.get(url, timeout=timeout if timeout is not None else self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(f"GET {url} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"GET {url} returned malformed JSON: {e}") from e

    def close(self):
        """Close the underlying HTTP session."""
        self.session.close()
