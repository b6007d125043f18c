"""Text renderings of a DAG definition."""

import re
from typing import List

from specflow.dag.models import DAGDefinition, FeatureSpec


def render_ascii(definition: DAGDefinition) -> str:
    """Layers with their features, followed by the dependency list and a legend."""
    if not definition.layers:
        return "DAG has no layers to visualize."

    name = definition.name or "(unnamed)"
    lines = [f"DAG: {name}", "=" * (len(name) + 5)]
    lines.append(f"Layers: {len(definition.layers)}  |  Features: {definition.feature_count}")
    lines.append("")

    for index, layer in enumerate(definition.layers):
        title = f"{layer.id} ({layer.name})" if layer.name else layer.id
        lines.append(f"[{title}]")

        features = sorted(layer.features, key=lambda f: f.id)
        if not features:
            lines.append("  (no features)")
        for position, feature in enumerate(features):
            prefix = "  +-" if position == len(features) - 1 else "  |-"
            marker = " *" if feature.depends_on else ""
            lines.append(f"{prefix} {feature.id}{marker}")

        if index < len(definition.layers) - 1:
            lines.extend(["    |", "    v"])

    dependencies = _dependency_lines(definition)
    if dependencies:
        lines.append("")
        lines.append("Feature Dependencies:")
        lines.append("---------------------")
        lines.extend(dependencies)

    lines.append("")
    lines.append("Legend:")
    lines.append("  * = has dependencies (see list above)")
    lines.append("  --> = depends on")
    return "\n".join(lines) + "\n"


def _dependency_lines(definition: DAGDefinition) -> List[str]:
    lines = []
    for _, _, feature in definition.iter_features():
        if feature.depends_on:
            lines.append(f"  {feature.id} --> {', '.join(sorted(feature.depends_on))}")
    return sorted(lines)


def render_compact(definition: DAGDefinition) -> str:
    """Single line: L0: [a, b] -> L1: [c]"""
    if not definition.layers:
        return "Empty DAG"
    return " -> ".join(
        f"{layer.id}: [{', '.join(sorted(layer.feature_ids))}]" for layer in definition.layers
    )


def _mermaid_id(feature_id: str) -> str:
    return "f_" + re.sub(r"[^A-Za-z0-9_]", "_", feature_id)


def _mermaid_label(feature: FeatureSpec) -> str:
    return feature.id.replace('"', "'")


def to_mermaid(definition: DAGDefinition) -> str:
    """Generate a Mermaid diagram: one subgraph per layer, one edge per dependency."""
    lines = ["graph TD"]

    for index, layer in enumerate(definition.layers):
        title = (layer.name or layer.id).replace('"', "'")
        lines.append(f'    subgraph layer_{index}["{title}"]')
        for feature in layer.features:
            lines.append(f'        {_mermaid_id(feature.id)}["{_mermaid_label(feature)}"]')
        lines.append("    end")

    for _, _, feature in definition.iter_features():
        for dep in feature.depends_on:
            lines.append(f"    {_mermaid_id(dep)} --> {_mermaid_id(feature.id)}")

    return "\n".join(lines)
