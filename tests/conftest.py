"""
Pytest configuration and shared fixtures
"""
from unittest.mock import Mock

import pytest

from ecs_exporter.metadata_client import ContainerStats, EcsMetadataClient, TaskMetadata
from tests.fixtures import TEST_ENDPOINT, load_fixture


@pytest.fixture
def task_metadata_doc():
    """Raw task metadata document"""
    return load_fixture("task_metadata.json")


@pytest.fixture
def task_stats_doc():
    """Raw task stats document"""
    return load_fixture("task_stats.json")


@pytest.fixture
def task_metadata(task_metadata_doc):
    """Decoded task metadata"""
    return TaskMetadata.from_dict(task_metadata_doc)


@pytest.fixture
def task_stats(task_stats_doc):
    """Decoded task stats"""
    return {
        docker_id: ContainerStats.from_dict(entry)
        for docker_id, entry in task_stats_doc.items()
    }


@pytest.fixture
def client():
    """Metadata client pointed at the test endpoint"""
    client = EcsMetadataClient(TEST_ENDPOINT)
    yield client
    client.close()


@pytest.fixture
def mock_client(task_metadata, task_stats):
    """Client stub returning the fixture documents"""
    stub = Mock(spec=EcsMetadataClient)
    stub.retrieve_task_metadata.return_value = task_metadata
    stub.retrieve_task_stats.return_value = task_stats
    return stub
