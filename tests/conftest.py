"""
Shared fixtures: a config rooted in a temporary Hardhat-like workspace, an
artifact store and a target for the sample Vault contract.
"""

import sys

import pytest

from exploit_refiner.config import Config
from exploit_refiner.models import RefinementSession, Target
from exploit_refiner.storage import ArtifactStore

from tests.helpers import VAULT_SOURCE


@pytest.fixture
def config(tmp_path):
    workspace = tmp_path / "workspace"
    (workspace / "test").mkdir(parents=True)
    return Config(
        generation_api_key="test-key",
        workspace_path=str(workspace),
        runs_dir=str(tmp_path / "runs"),
        harness_command=[sys.executable, "{artifact}"],
        harness_env={},
        execution_timeout=10.0,
        watchdog_grace=1.0,
        stagger_interval=0.0,
    )


@pytest.fixture
def store(config):
    return ArtifactStore(config.get_artifact_root(), runs_dir=config.runs_dir)


@pytest.fixture
def target():
    return Target.from_request(VAULT_SOURCE, "Reentrancy in withdraw", severity="High")


@pytest.fixture
def session(target):
    return RefinementSession(target=target, max_cycles=5)
