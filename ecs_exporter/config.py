"""
Exporter configuration.

Every command-line flag falls back to an environment variable, so the
exporter can be configured either way when running as an ECS sidecar.

Usage:
    config = ExporterConfig.from_args(['--addr', ':9779', '--custom-labels', 'env=prod'])
"""

import argparse
import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ecs_exporter.errors import ConfigurationError
from ecs_exporter.metadata_client import DEFAULT_TIMEOUT
from ecs_exporter.metrics import LabelPairs

logger = logging.getLogger(__name__)

CUSTOM_LABEL_SEPARATOR = ','
CUSTOM_LABEL_KEY_VALUE_SEPARATOR = '='

DEFAULT_ADDR = ':9779'
TRUE_VALUES = ('1', 'true', 'yes', 'on')


def parse_custom_labels(text: Optional[str]) -> LabelPairs:
    """
    Parse ``key1=value1,key2=value2`` into ordered (name, value) pairs.

    Pairs without '=' are ignored. A repeated key keeps the position of its
    first occurrence and the value of its last.
    """
    labels = {}
    if not text:
        return ()

    for pair in text.split(CUSTOM_LABEL_SEPARATOR):
        parts = pair.split(CUSTOM_LABEL_KEY_VALUE_SEPARATOR, 1)
        if len(parts) == 2:
            labels[parts[0]] = parts[1]
        elif pair:
            logger.warning(f"Ignoring custom label without '{CUSTOM_LABEL_KEY_VALUE_SEPARATOR}': {pair!r}")
    return tuple(labels.items())


def parse_listen_address(addr: str) -> Tuple[str, int]:
    """
    Split a ``host:port`` listen address. An empty host listens on all interfaces.

    Raises:
        ConfigurationError: if the port is missing or not a valid port number.
    """
    host, sep, port = addr.rpartition(':')
    if not sep:
        raise ConfigurationError(f"listen address {addr!r} has no port")
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigurationError(f"invalid port in listen address {addr!r}")
    if not 0 <= port_number <= 65535:
        raise ConfigurationError(f"port out of range in listen address {addr!r}")

    host = host.strip('[]') or '0.0.0.0'
    return host, port_number


def _env_flag(name: str) -> bool:
    return os.getenv(name, '').strip().lower() in TRUE_VALUES


@dataclass
class ExporterConfig:
    """Runtime settings of the exporter process."""
    addr: str = DEFAULT_ADDR
    ignore_exporter_metrics: bool = False
    custom_labels: LabelPairs = ()
    timeout: float = DEFAULT_TIMEOUT
    log_level: str = 'INFO'

    @property
    def listen_address(self) -> Tuple[str, int]:
        return parse_listen_address(self.addr)

    @classmethod
    def from_args(cls, argv: Optional[List[str]] = None) -> 'ExporterConfig':
        """Build the configuration from command-line arguments and the environment."""
        parser = argparse.ArgumentParser(description='Prometheus exporter for Amazon ECS task metrics')
        parser.add_argument('--addr', default=os.getenv('ECS_EXPORTER_ADDR', DEFAULT_ADDR),
                            help='The address to listen on for HTTP requests.')
        parser.add_argument('--ignore-exporter-metrics', action='store_true',
                            default=_env_flag('ECS_EXPORTER_IGNORE_EXPORTER_METRICS'),
                            help="Don't expose the exporter's own process and scrape metrics.")
        parser.add_argument('--custom-labels', default=os.getenv('ECS_EXPORTER_CUSTOM_LABELS', ''),
                            help='Custom labels added to all the metrics, e.g. key1=value1,key2=value2')
        parser.add_argument('--timeout', type=float,
                            default=os.getenv('ECS_EXPORTER_TIMEOUT', str(DEFAULT_TIMEOUT)),
                            help='Timeout in seconds for each request to the metadata endpoint.')
        parser.add_argument('--log-level', default=os.getenv('LOG_LEVEL', 'INFO'),
                            choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                            type=str.upper,
                            help='Logging level.')
        args = parser.parse_args(argv)

        if args.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {args.timeout}")

        config = cls(
            addr=args.addr,
            ignore_exporter_metrics=args.ignore_exporter_metrics,
            custom_labels=parse_custom_labels(args.custom_labels),
            timeout=args.timeout,
            log_level=args.log_level,
        )
        # Fail fast on a bad address
        parse_listen_address(config.addr)
        return config
