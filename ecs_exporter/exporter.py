"""
Main ECS Exporter application.

This module implements the HTTP server that exposes ECS task and container
statistics in Prometheus format. Metrics are collected on demand: every
request to /metrics scrapes the task metadata endpoint once.
"""

import logging
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv
from flask import Flask, Response, redirect
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, generate_latest

from ecs_exporter import __version__
from ecs_exporter.collector import EcsCollector
from ecs_exporter.config import ExporterConfig
from ecs_exporter.errors import ConfigurationError
from ecs_exporter.metadata_client import EcsMetadataClient
from ecs_exporter.metrics import CustomLabels, ScrapeHealth

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(level: str = 'INFO'):
    """Send log records to stdout with the exporter's format."""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def build_registry(
    client: EcsMetadataClient,
    custom_labels: CustomLabels = None,
    ignore_exporter_metrics: bool = False,
    timeout: Optional[float] = None
) -> CollectorRegistry:
    """
    Register the ECS collector on the registry /metrics is served from.

    Args:
        client: Metadata endpoint client.
        custom_labels: Extra labels added to every ECS sample.
        ignore_exporter_metrics: If True, use a fresh registry holding only
            the ECS collector instead of the default registry with the
            process, platform and scrape health metrics.
        timeout: Per-request timeout for the upstream fetches.

    Returns:
        The registry to expose.
    """
    if ignore_exporter_metrics:
        logger.info("Exporter metrics will not be exposed.")
        registry = CollectorRegistry()
        health = None
    else:
        logger.info("Exporter metrics will be exposed.")
        registry = REGISTRY
        health = ScrapeHealth(registry)

    registry.register(EcsCollector(client, custom_labels, timeout=timeout, health=health))
    return registry


def create_app(registry: CollectorRegistry) -> Flask:
    """Create the Flask app serving the given registry."""
    app = Flask(__name__)

    @app.route('/metrics')
    def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(registry), content_type=CONTENT_TYPE_LATEST)

    @app.route('/health')
    def health():
        """Health check endpoint."""
        return Response('ok', status=200, mimetype='text/plain')

    @app.route('/')
    def root():
        """Redirect to the metrics endpoint."""
        return redirect('/metrics', code=301)

    return app


class EcsExporter:
    """Main exporter class that serves ECS metrics over HTTP."""

    def __init__(self, config: ExporterConfig, client: EcsMetadataClient):
        """
        Initialize the ECS exporter.

        Args:
            config: Exporter configuration
            client: Metadata endpoint client
        """
        self.config = config
        self.client = client
        self.registry = build_registry(
            client,
            config.custom_labels,
            ignore_exporter_metrics=config.ignore_exporter_metrics,
            timeout=config.timeout
        )
        self.app = create_app(self.registry)

        # Register signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.stop()
        sys.exit(0)

    def start(self):
        """Start serving metrics."""
        host, port = self.config.listen_address
        logger.info(f"Starting server at {self.config.addr!r}")
        self.app.run(host=host, port=port, threaded=True)

    def stop(self):
        """Release the metadata client."""
        self.client.close()
        logger.info("Exporter stopped")


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    load_dotenv()

    try:
        config = ExporterConfig.from_args(argv)
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    configure_logging(config.log_level)
    logger.info(f"ECS Exporter v{__version__}")

    try:
        client = EcsMetadataClient.from_environment(timeout=config.timeout)
        exporter = EcsExporter(config, client)
    except ConfigurationError as e:
        logger.error(f"Error creating client: {e}")
        sys.exit(1)

    try:
        exporter.start()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
        exporter.stop()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        exporter.stop()
        sys.exit(1)


if __name__ == '__main__':
    main()
