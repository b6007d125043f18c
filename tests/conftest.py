"""
Pytest configuration and fixtures for the specflow project.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncio
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytest

from specflow.config import Settings
from specflow.dag.models import DAGDefinition, FeatureSpec, Layer
from specflow.dag.parser import EXAMPLE_DAG_YAML, YAMLParser
from specflow.execution.executor import FeatureExecutor
from specflow.execution.pipeline import CallablePipeline
from specflow.execution.scheduler import RunController
from specflow.storage.backends.filesystem import RunStateStore


def build_definition(
    layers: Sequence[Tuple[str, Sequence[Tuple[str, Iterable[str]]]]],
    name: str = "test dag",
    schema_version: str = "1.0",
) -> DAGDefinition:
    """Build a definition from [(layer_id, [(feature_id, [deps])])]."""
    return DAGDefinition(
        schema_version=schema_version,
        name=name,
        layers=tuple(
            Layer(
                id=layer_id,
                name=f"Layer {layer_id}",
                features=tuple(
                    FeatureSpec(id=feature_id, description=f"build {feature_id}", depends_on=tuple(deps))
                    for feature_id, deps in features
                ),
            )
            for layer_id, features in layers
        ),
    )


class FakePipeline:
    """
    In-process pipeline that records start/finish order.

    ``fail`` ids exit non-zero, ``raise_for`` ids raise, ``delays`` set how
    long a feature takes, ``block`` ids wait until cancelled.
    """

    def __init__(
        self,
        fail: Iterable[str] = (),
        raise_for: Iterable[str] = (),
        delays: Optional[Dict[str, float]] = None,
        block: Iterable[str] = (),
    ):
        self.fail: Set[str] = set(fail)
        self.raise_for: Set[str] = set(raise_for)
        self.delays = delays or {}
        self.block: Set[str] = set(block)
        self.events: List[Tuple[str, str]] = []
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self.cancelled: List[str] = []
        self.pipeline = CallablePipeline(self._run)

    async def _run(self, feature, output):
        self.calls.append(feature.id)
        self.events.append(("start", feature.id))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            output.write_line(f"working on {feature.id}")
            if feature.id in self.block:
                await asyncio.Event().wait()
            await asyncio.sleep(self.delays.get(feature.id, 0.01))
            if feature.id in self.raise_for:
                raise RuntimeError(f"{feature.id} exploded")
            return 1 if feature.id in self.fail else 0
        except asyncio.CancelledError:
            self.cancelled.append(feature.id)
            raise
        finally:
            self.active -= 1
            self.events.append(("finish", feature.id))


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def sample_yaml() -> str:
    return EXAMPLE_DAG_YAML


@pytest.fixture
def sample_definition() -> DAGDefinition:
    return YAMLParser.parse_string(EXAMPLE_DAG_YAML)


@pytest.fixture
def diamond_definition() -> DAGDefinition:
    """layer 1 {A, B}, layer 2 {C: [A, B]}"""
    return build_definition([
        ("L1", [("A", []), ("B", [])]),
        ("L2", [("C", ["A", "B"])]),
    ])


@pytest.fixture
def dag_file(tmp_path, sample_yaml) -> Path:
    path = tmp_path / "rollout.yaml"
    path.write_text(sample_yaml)
    return path


@pytest.fixture
def state_dir(tmp_path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def settings(tmp_path, state_dir) -> Settings:
    return Settings(state_dir=state_dir, log_dir=tmp_path / "logs")


@pytest.fixture
def legacy_settings(state_dir) -> Settings:
    return Settings(state_dir=state_dir, legacy_logs=True)


@pytest.fixture
def store(state_dir) -> RunStateStore:
    return RunStateStore(state_dir)


@pytest.fixture
def fake_pipeline() -> FakePipeline:
    return FakePipeline()


@pytest.fixture
def make_controller(store, settings):
    """Factory building a RunController around a FakePipeline."""
    def factory(pipeline: Optional[FakePipeline] = None, controller_settings: Optional[Settings] = None):
        pipeline = pipeline or FakePipeline()
        executor = FeatureExecutor(pipeline.pipeline)
        return RunController(store, executor, controller_settings or settings), pipeline
    return factory


@pytest.fixture
def make_definition():
    return build_definition


@pytest.fixture
def make_pipeline():
    return FakePipeline
