"""Structural and semantic validation of DAG definitions."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import structlog

from specflow.dag.graph import FeatureGraph
from specflow.dag.models import DAGDefinition
from specflow.exceptions import SpecflowError

logger = structlog.get_logger(__name__)

SUPPORTED_SCHEMA_VERSIONS = ("1.0", "1")


class ValidationErrorKind(str, Enum):
    """Kinds of DAG validation failures."""
    UNSUPPORTED_SCHEMA_VERSION = "UnsupportedSchemaVersion"
    MISSING_LAYERS = "MissingLayers"
    EMPTY_LAYER = "EmptyLayer"
    MISSING_FIELD = "MissingField"
    DUPLICATE_FEATURE_ID = "DuplicateFeatureID"
    UNRESOLVED_DEPENDENCY = "UnresolvedDependency"
    INVALID_DEPENDENCY_ORDER = "InvalidDependencyOrder"
    CYCLE_DETECTED = "CycleDetected"


@dataclass(frozen=True)
class ValidationError:
    kind: ValidationErrorKind
    message: str
    feature_id: Optional[str] = None
    layer_id: Optional[str] = None

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class DAGValidationError(SpecflowError):
    """Raised when a DAG definition fails validation."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = list(errors)
        lines = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(f"DAG validation failed with {len(self.errors)} error(s):\n{lines}")


class DAGValidator:
    """Validate a parsed DAG. Pure: never touches run state or the filesystem."""

    def __init__(self, supported_versions: Tuple[str, ...] = SUPPORTED_SCHEMA_VERSIONS):
        self.supported_versions = supported_versions

    def validate(self, definition: DAGDefinition) -> Tuple[bool, List[ValidationError]]:
        """Run every check in order and collect all errors."""
        errors: List[ValidationError] = []

        errors.extend(self._check_schema_version(definition))
        errors.extend(self._check_structure(definition))
        errors.extend(self._check_uniqueness(definition))
        errors.extend(self._check_dependencies(definition))
        errors.extend(self._check_cycles(definition))

        logger.debug("dag_validated", name=definition.name, errors=len(errors))
        return not errors, errors

    def validate_or_raise(self, definition: DAGDefinition) -> None:
        ok, errors = self.validate(definition)
        if not ok:
            raise DAGValidationError(errors)

    def _check_schema_version(self, definition: DAGDefinition) -> List[ValidationError]:
        version = definition.schema_version.strip()
        if not version:
            return [ValidationError(
                ValidationErrorKind.UNSUPPORTED_SCHEMA_VERSION,
                "missing required field 'schema_version'",
            )]
        if version not in self.supported_versions:
            return [ValidationError(
                ValidationErrorKind.UNSUPPORTED_SCHEMA_VERSION,
                f"unsupported schema_version {version!r}; supported: {', '.join(self.supported_versions)}",
            )]
        return []

    def _check_structure(self, definition: DAGDefinition) -> List[ValidationError]:
        if not definition.layers:
            return [ValidationError(
                ValidationErrorKind.MISSING_LAYERS,
                "DAG must declare at least one layer",
            )]

        errors: List[ValidationError] = []
        for index, layer in enumerate(definition.layers):
            label = layer.id or f"at index {index}"
            if not layer.id:
                errors.append(ValidationError(
                    ValidationErrorKind.MISSING_FIELD,
                    f"layer at index {index} is missing required field 'id'",
                ))
            if not layer.features:
                errors.append(ValidationError(
                    ValidationErrorKind.EMPTY_LAYER,
                    f"layer {label} must contain at least one feature",
                    layer_id=layer.id or None,
                ))
            for position, feature in enumerate(layer.features):
                if not feature.id:
                    errors.append(ValidationError(
                        ValidationErrorKind.MISSING_FIELD,
                        f"feature at index {position} of layer {label} is missing required field 'id'",
                        layer_id=layer.id or None,
                    ))
        return errors

    def _check_uniqueness(self, definition: DAGDefinition) -> List[ValidationError]:
        errors: List[ValidationError] = []
        seen: Dict[str, str] = {}

        for index, layer, feature in definition.iter_features():
            if not feature.id:
                continue
            location = layer.id or f"at index {index}"
            if feature.id in seen:
                errors.append(ValidationError(
                    ValidationErrorKind.DUPLICATE_FEATURE_ID,
                    f"duplicate feature id {feature.id!r} "
                    f"(first defined in layer {seen[feature.id]}, duplicate in layer {location})",
                    feature_id=feature.id,
                    layer_id=layer.id or None,
                ))
            else:
                seen[feature.id] = location
        return errors

    def _check_dependencies(self, definition: DAGDefinition) -> List[ValidationError]:
        errors: List[ValidationError] = []
        layer_index = definition.layer_index()

        for index, layer, feature in definition.iter_features():
            for dep in feature.depends_on:
                if dep not in layer_index:
                    errors.append(ValidationError(
                        ValidationErrorKind.UNRESOLVED_DEPENDENCY,
                        f"feature {feature.id!r} depends on unknown feature {dep!r}",
                        feature_id=feature.id,
                        layer_id=layer.id or None,
                    ))
                elif layer_index[dep] >= index:
                    where = "the same layer" if layer_index[dep] == index else "a later layer"
                    errors.append(ValidationError(
                        ValidationErrorKind.INVALID_DEPENDENCY_ORDER,
                        f"feature {feature.id!r} depends on {dep!r}, which is declared in {where}; "
                        f"dependencies must be in a strictly earlier layer",
                        feature_id=feature.id,
                        layer_id=layer.id or None,
                    ))
        return errors

    def _check_cycles(self, definition: DAGDefinition) -> List[ValidationError]:
        graph = FeatureGraph.from_definition(definition)
        if len(graph.topological_sort()) == len(graph.nodes):
            return []

        cycle = graph.find_cycle()
        return [ValidationError(
            ValidationErrorKind.CYCLE_DETECTED,
            f"cycle detected in feature dependencies: {' -> '.join(cycle)}",
            feature_id=cycle[0] if cycle else None,
        )]
