"""
Shared test data for the ECS exporter tests.

task_metadata.json and task_stats.json are responses of the ECS task
metadata endpoint (v4) for a Fargate task with an application container
and the ECS pause container.
"""
import copy
import json
from pathlib import Path

FIXTURES_DIR = Path(__file__).parent

TEST_ENDPOINT = "http://169.254.170.2/v4/ea32192c8553fbff06c9340478a2ff089b2bb5646fb718b4ee206641c9086d66-2470140894"
TASK_ARN = "arn:aws:ecs:us-west-2:111122223333:task/default/158d1c8083dd49d6b527399fd6414f5c"
TASK_ID = "158d1c8083dd49d6b527399fd6414f5c"
CURL_DOCKER_ID = "ea32192c8553fbff06c9340478a2ff089b2bb5646fb718b4ee206641c9086d66"
PAUSE_DOCKER_ID = "1e1de5cf33dc1b4ea5ecb4ecc3f1d0cc85dd6ab5d23b59a5fdb3a85e2a1b3a3d"

_cache = {}


def load_fixture(name):
    """Load a JSON document from tests/fixtures (a fresh copy every call)"""
    if name not in _cache:
        with open(FIXTURES_DIR / name) as f:
            _cache[name] = json.load(f)
    return copy.deepcopy(_cache[name])
