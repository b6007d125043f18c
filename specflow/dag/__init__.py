"""DAG definition, parsing, validation and planning."""

from specflow.dag.models import DAGDefinition, Layer, FeatureSpec
from specflow.dag.graph import FeatureGraph
from specflow.dag.parser import YAMLParser, DAGParseError
from specflow.dag.validator import (
    DAGValidator,
    DAGValidationError,
    ValidationError,
    ValidationErrorKind,
)
from specflow.dag.planner import ExecutionPlanner, ExecutionPlan, Wave
from specflow.dag.visualizer import render_ascii, render_compact, to_mermaid

__all__ = [
    # Model
    "DAGDefinition",
    "Layer",
    "FeatureSpec",
    "FeatureGraph",

    # Parser
    "YAMLParser",
    "DAGParseError",

    # Validator
    "DAGValidator",
    "DAGValidationError",
    "ValidationError",
    "ValidationErrorKind",

    # Planner
    "ExecutionPlanner",
    "ExecutionPlan",
    "Wave",

    # Visualizer
    "render_ascii",
    "render_compact",
    "to_mermaid",
]
