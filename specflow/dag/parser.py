"""YAML parser for DAG workflow definitions."""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog
import yaml

from specflow.dag.models import DAGDefinition, FeatureSpec, Layer
from specflow.exceptions import SpecflowError

logger = structlog.get_logger(__name__)


class DAGParseError(SpecflowError):
    """Raised when a DAG document is not well-formed."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.path = str(path) if path is not None else None
        if self.path:
            message = f"{self.path}: {message}"
        super().__init__(message)


def _as_list(value: Any, where: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DAGParseError(f"{where} must be a list, got {type(value).__name__}")
    return value


def _as_mapping(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise DAGParseError(f"{where} must be a mapping, got {type(value).__name__}")
    return value


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


class YAMLParser:
    """Parse YAML DAG definitions."""

    @staticmethod
    def parse_file(file_path: Union[str, Path]) -> DAGDefinition:
        """Parse a DAG from a YAML file."""
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"DAG file not found: {file_path}")

        with open(file_path, 'r') as f:
            text = f.read()

        try:
            return YAMLParser.parse_string(text)
        except DAGParseError as e:
            raise DAGParseError(str(e), path=file_path) from e

    @staticmethod
    def parse_string(yaml_string: str) -> DAGDefinition:
        """Parse a DAG from a YAML string."""
        try:
            data = yaml.safe_load(yaml_string)
        except yaml.YAMLError as e:
            raise DAGParseError(f"invalid YAML: {e}") from e

        if data is None:
            raise DAGParseError("empty document")

        return YAMLParser.parse_dict(data)

    @staticmethod
    def parse_dict(data: Dict[str, Any]) -> DAGDefinition:
        """Build a DAGDefinition from already-loaded YAML data."""
        data = _as_mapping(data, "document root")
        dag_meta = _as_mapping(data.get("dag") or {}, "dag")

        layers = tuple(
            YAMLParser._parse_layer(layer_data, index)
            for index, layer_data in enumerate(_as_list(data.get("layers"), "layers"))
        )

        definition = DAGDefinition(
            schema_version=_as_str(data.get("schema_version")),
            name=_as_str(dag_meta.get("name")),
            description=_as_str(dag_meta.get("description")),
            layers=layers,
        )

        logger.debug(
            "dag_parsed",
            name=definition.name,
            layers=len(definition.layers),
            features=definition.feature_count,
        )

        return definition

    @staticmethod
    def _parse_layer(data: Any, index: int) -> Layer:
        where = f"layers[{index}]"
        data = _as_mapping(data, where)
        features = tuple(
            YAMLParser._parse_feature(feature_data, f"{where}.features[{position}]")
            for position, feature_data in enumerate(_as_list(data.get("features"), f"{where}.features"))
        )
        return Layer(
            id=_as_str(data.get("id")),
            name=_as_str(data.get("name")),
            features=features,
        )

    @staticmethod
    def _parse_feature(data: Any, where: str) -> FeatureSpec:
        data = _as_mapping(data, where)
        depends_on = tuple(
            _as_str(dep) for dep in _as_list(data.get("depends_on"), f"{where}.depends_on")
        )
        timeout = data.get("timeout")
        return FeatureSpec(
            id=_as_str(data.get("id")),
            description=_as_str(data.get("description")),
            depends_on=depends_on,
            timeout=None if timeout is None else str(timeout),
        )

    @staticmethod
    def to_dict(definition: DAGDefinition) -> Dict[str, Any]:
        """Convert a definition back to its YAML document structure."""
        layers = []
        for layer in definition.layers:
            features = []
            for feature in layer.features:
                feature_data: Dict[str, Any] = {
                    "id": feature.id,
                    "description": feature.description,
                }
                if feature.depends_on:
                    feature_data["depends_on"] = list(feature.depends_on)
                if feature.timeout:
                    feature_data["timeout"] = feature.timeout
                features.append(feature_data)

            layer_data: Dict[str, Any] = {"id": layer.id}
            if layer.name:
                layer_data["name"] = layer.name
            layer_data["features"] = features
            layers.append(layer_data)

        return {
            "schema_version": definition.schema_version,
            "dag": {
                "name": definition.name,
                "description": definition.description,
            },
            "layers": layers,
        }

    @staticmethod
    def to_yaml(definition: DAGDefinition) -> str:
        """Convert a definition to YAML."""
        return yaml.safe_dump(YAMLParser.to_dict(definition), default_flow_style=False, sort_keys=False)


# Example DAG definition
EXAMPLE_DAG_YAML = """
schema_version: "1.0"
dag:
  name: "Auth rollout"
  description: "Login, sessions and the account page"

layers:
  - id: L0
    name: Foundations
    features:
      - id: 010-user-model
        description: "User model and persistence"
      - id: 011-password-hashing
        description: "Password hashing utilities"

  - id: L1
    name: Flows
    features:
      - id: 020-login
        description: "Login endpoint"
        depends_on: [010-user-model, 011-password-hashing]
        timeout: 45m
      - id: 021-sessions
        description: "Session management"
        depends_on: [010-user-model]

  - id: L2
    name: UI
    features:
      - id: 030-account-page
        description: "Account settings page"
        depends_on: [020-login, 021-sessions]
"""
