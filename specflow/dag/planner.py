"""Execution planning: one wave of concurrently executable features per declared layer."""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from specflow.dag.models import DAGDefinition


@dataclass(frozen=True)
class Wave:
    """Features of one declared layer, in declaration order."""
    index: int
    layer_id: str
    layer_name: str
    feature_ids: List[str] = field(default_factory=list)


@dataclass
class ExecutionPlan:
    """Execution plan for a DAG."""
    definition: DAGDefinition
    waves: List[Wave]
    max_parallel: int = 0

    @classmethod
    def from_definition(cls, definition: DAGDefinition, max_parallel: int = 0) -> "ExecutionPlan":
        """Create an execution plan from a (validated) definition."""
        waves = [
            Wave(
                index=index,
                layer_id=layer.id,
                layer_name=layer.name,
                feature_ids=layer.feature_ids,
            )
            for index, layer in enumerate(definition.layers)
        ]
        return cls(definition=definition, waves=waves, max_parallel=max_parallel)

    @property
    def feature_ids(self) -> List[List[str]]:
        return [list(wave.feature_ids) for wave in self.waves]

    @property
    def total_features(self) -> int:
        return sum(len(wave.feature_ids) for wave in self.waves)

    def dry_run(self, log_path_for: Optional[Callable[[str], str]] = None) -> str:
        """Render what a run would execute, without executing anything."""
        lines = ["=== DRY RUN ==="]
        lines.append(f"DAG: {self.definition.name or '(unnamed)'}")
        parallel = str(self.max_parallel) if self.max_parallel else "unbounded"
        lines.append(
            f"Waves: {len(self.waves)}  |  Features: {self.total_features}  |  Max parallel: {parallel}"
        )
        lines.append("")

        for wave in self.waves:
            title = f"Wave {wave.index + 1}: layer {wave.layer_id}"
            if wave.layer_name:
                title += f" ({wave.layer_name})"
            lines.append(title)

            for feature_id in wave.feature_ids:
                lines.append(f"  - {feature_id}")
                feature = self.definition.get_feature(feature_id)
                if feature is not None and feature.depends_on:
                    lines.append(f"    depends on: {', '.join(feature.depends_on)}")
                if log_path_for is not None:
                    lines.append(f"    log: {log_path_for(feature_id)}")
            lines.append("")

        lines.append("=== END DRY RUN ===")
        return "\n".join(lines)


class ExecutionPlanner:
    """Turn a validated definition into ordered execution waves."""

    def __init__(self, max_parallel: int = 0):
        self.max_parallel = max_parallel

    def plan(self, definition: DAGDefinition) -> ExecutionPlan:
        return ExecutionPlan.from_definition(definition, self.max_parallel)
