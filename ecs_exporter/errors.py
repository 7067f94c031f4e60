"""Exceptions raised by the ECS exporter."""


class EcsExporterError(Exception):
    """Base class for all exporter errors."""
    pass


class ConfigurationError(EcsExporterError):
    """Raised when the exporter cannot be configured (fatal at startup)."""
    pass


class TransportError(EcsExporterError):
    """Raised when the metadata endpoint cannot be reached."""
    pass


class DecodeError(EcsExporterError):
    """Raised when a metadata endpoint response is not the expected JSON."""
    pass


class MissingCorrelationError(EcsExporterError):
    """Raised when a container in the task metadata has no stats entry."""

    def __init__(self, docker_id: str):
        super().__init__(f"Couldn't find container with ID {docker_id!r} in stats")
        self.docker_id = docker_id
