"""In-memory model of a DAG definition: layers of features and their dependencies."""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class FeatureSpec:
    """One unit of work, itself a full specify -> plan -> tasks -> implement pipeline."""
    id: str
    description: str = ""
    depends_on: Tuple[str, ...] = ()
    timeout: Optional[str] = None


@dataclass(frozen=True)
class Layer:
    """A declared group of features executed together as one wave."""
    id: str
    name: str = ""
    features: Tuple[FeatureSpec, ...] = ()

    @property
    def feature_ids(self) -> List[str]:
        return [feature.id for feature in self.features]


@dataclass(frozen=True)
class DAGDefinition:
    """Complete DAG definition as loaded from a workflow file."""
    schema_version: str
    name: str = ""
    description: str = ""
    layers: Tuple[Layer, ...] = ()
    metadata: Dict[str, str] = field(default_factory=dict, compare=False)

    def iter_features(self) -> Iterator[Tuple[int, Layer, FeatureSpec]]:
        """Yield (layer index, layer, feature) in declaration order."""
        for index, layer in enumerate(self.layers):
            for feature in layer.features:
                yield index, layer, feature

    @property
    def feature_ids(self) -> List[str]:
        return [feature.id for _, _, feature in self.iter_features()]

    @property
    def feature_count(self) -> int:
        return sum(len(layer.features) for layer in self.layers)

    def get_feature(self, feature_id: str) -> Optional[FeatureSpec]:
        for _, _, feature in self.iter_features():
            if feature.id == feature_id:
                return feature
        return None

    def layer_index(self) -> Dict[str, int]:
        """Map feature id to the index of the first layer declaring it."""
        index: Dict[str, int] = {}
        for position, _, feature in self.iter_features():
            index.setdefault(feature.id, position)
        return index
