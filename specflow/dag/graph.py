"""Feature dependency graph with cycle detection and topological ordering."""

from collections import deque
from typing import Dict, List, Optional, Set

from specflow.dag.models import DAGDefinition


class FeatureGraph:
    """Directed graph of features; an edge A -> B means B depends on A."""

    def __init__(self, name: str = "dag"):
        self.name = name
        # feature -> features that depend on it
        self._adjacency: Dict[str, Set[str]] = {}

    @classmethod
    def from_definition(cls, definition: DAGDefinition) -> "FeatureGraph":
        """
        Build the graph from a definition.

        Duplicate ids are added once and references to unknown features
        are left out; both are reported by the validator, not here.
        """
        graph = cls(definition.name or "dag")
        for _, _, feature in definition.iter_features():
            if feature.id not in graph._adjacency:
                graph.add_node(feature.id)

        for _, _, feature in definition.iter_features():
            for dep in feature.depends_on:
                if dep in graph._adjacency:
                    graph.add_edge(dep, feature.id)

        return graph

    def add_node(self, node_id: str) -> None:
        if node_id in self._adjacency:
            raise ValueError(f"Node {node_id} already exists")
        self._adjacency[node_id] = set()

    def add_edge(self, source: str, target: str) -> None:
        """Add a dependency edge."""
        if source not in self._adjacency:
            raise ValueError(f"Source node {source} not found")
        if target not in self._adjacency:
            raise ValueError(f"Target node {target} not found")

        self._adjacency[source].add(target)

    @property
    def nodes(self) -> List[str]:
        return list(self._adjacency)

    def find_cycle(self) -> List[str]:
        """Return one cycle as a closed path (first node repeated at the end), or []."""
        visited: Set[str] = set()
        rec_stack: Set[str] = set()
        path: List[str] = []

        def dfs(node: str) -> Optional[List[str]]:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for neighbor in sorted(self._adjacency[node]):
                if neighbor not in visited:
                    result = dfs(neighbor)
                    if result:
                        return result
                elif neighbor in rec_stack:
                    cycle_start = path.index(neighbor)
                    return path[cycle_start:] + [neighbor]

            path.pop()
            rec_stack.remove(node)
            return None

        for node in self._adjacency:
            if node not in visited:
                result = dfs(node)
                if result:
                    return result

        return []

    def topological_sort(self) -> List[str]:
        """
        Kahn's algorithm. Nodes caught in a cycle are left out, so a result
        shorter than the node count means the graph is not acyclic.
        """
        in_degree: Dict[str, int] = {node: 0 for node in self._adjacency}
        for node in self._adjacency:
            for successor in self._adjacency[node]:
                in_degree[successor] += 1

        queue = deque(node for node in self._adjacency if in_degree[node] == 0)
        result: List[str] = []

        while queue:
            node = queue.popleft()
            result.append(node)

            for successor in sorted(self._adjacency[node]):
                in_degree[successor] -= 1
                if in_degree[successor] == 0:
                    queue.append(successor)

        return result
