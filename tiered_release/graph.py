"""Dependency graph utilities.

Provides layered topological sorting for determining release order across
repositories. When repository A depends on repository B, B must be tagged
before A so that A never references a version of B that does not exist yet.

Nodes live in an arena and are addressed by integer index; adjacency is
stored as index lists. The graph is never mutated after build(), so worker
threads can read it freely while a level fans out.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .errors import CycleError, GraphError
from .models import Manifest, RepoNode


class DependencyGraph:
    """Directed acyclic graph of repositories.

    An edge A → B means A's manifest requires B's module path.
    """

    def __init__(self) -> None:
        self._nodes: list[RepoNode] = []
        self._by_name: dict[str, int] = {}
        self._by_module: dict[str, int] = {}
        self._deps: list[list[int]] = []
        self._rdeps: list[list[int]] = []

    @classmethod
    def build(
        cls,
        nodes: Sequence[RepoNode],
        manifests: Mapping[str, Manifest],
        *,
        include_external: bool = False,
    ) -> DependencyGraph:
        """Construct the graph from repositories and their manifests.

        Args:
            nodes: Repositories in the workspace.
            manifests: Map of repository name → Manifest. Repositories with
                no entry have no dependencies.
            include_external: Add each requirement that is not a workspace
                module as an external leaf node instead of ignoring it.

        Raises:
            GraphError: On duplicate names or module paths.
        """
        graph = cls()
        for node in nodes:
            graph._add_node(node)

        for node in nodes:
            manifest = manifests.get(node.name)
            if manifest is None:
                continue
            src = graph._by_name[node.name]
            for req in manifest.requirements:
                if req == node.module_path:
                    continue
                dst = graph._by_module.get(req)
                if dst is None:
                    if not include_external:
                        continue
                    dst = graph._add_node(
                        RepoNode(name=req, module_path=req, external=True)
                    )
                graph._add_edge(src, dst)
        return graph

    def _add_node(self, node: RepoNode) -> int:
        if node.name in self._by_name:
            raise GraphError(f"Duplicate repository name: {node.name}")
        if node.module_path in self._by_module:
            other = self._nodes[self._by_module[node.module_path]].name
            raise GraphError(
                f"Repositories {other} and {node.name} both publish {node.module_path}"
            )
        idx = len(self._nodes)
        self._nodes.append(node)
        self._by_name[node.name] = idx
        self._by_module[node.module_path] = idx
        self._deps.append([])
        self._rdeps.append([])
        return idx

    def _add_edge(self, src: int, dst: int) -> None:
        if dst in self._deps[src]:
            return
        self._deps[src].append(dst)
        self._rdeps[dst].append(src)

    def _index(self, name: str) -> int:
        try:
            return self._by_name[name]
        except KeyError:
            raise GraphError(f"Unknown repository: {name}") from None

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._nodes)

    @property
    def names(self) -> list[str]:
        """All node names in insertion order."""
        return [node.name for node in self._nodes]

    def node(self, name: str) -> RepoNode:
        """Return a node by name.

        Raises:
            GraphError: If no such node exists.
        """
        return self._nodes[self._index(name)]

    def nodes(self, *, include_external: bool = True) -> list[RepoNode]:
        return [n for n in self._nodes if include_external or not n.external]

    def dependencies(self, name: str) -> list[str]:
        """Module paths of the direct dependencies of a repository."""
        return [self._nodes[i].module_path for i in self._deps[self._index(name)]]

    def dependency_names(self, name: str) -> list[str]:
        """Names of the direct dependencies of a repository."""
        return [self._nodes[i].name for i in self._deps[self._index(name)]]

    def dependents(self, name: str) -> list[str]:
        """Names of the repositories that directly depend on a repository."""
        return [self._nodes[i].name for i in self._rdeps[self._index(name)]]

    def topological_sort(self) -> list[list[str]]:
        """Group every node into release levels.

        Level i holds exactly the nodes whose dependencies all sit in levels
        below i. Names within a level are sorted for deterministic output.

        Raises:
            CycleError: If the dependency edges contain a cycle.

        Example:
            If A depends on B, and B depends on C:
            topological_sort() → [["C"], ["B"], ["A"]]
        """
        return self._levels(range(len(self._nodes)))

    def topological_sort_with_filter(self, subset: Iterable[str]) -> list[list[str]]:
        """Level only the given nodes.

        Dependencies outside the subset are not being released, so they are
        treated as already satisfied and never gate a node's level.

        Raises:
            GraphError: If a name in the subset is unknown.
            CycleError: If the subset contains a cycle.
        """
        return self._levels(self._index(name) for name in subset)

    def _levels(self, indices: Iterable[int]) -> list[list[str]]:
        members = set(indices)
        if not members:
            return []

        # Count only dependencies that are also being levelled
        in_degree = {
            idx: sum(1 for dep in self._deps[idx] if dep in members) for idx in members
        }
        current = [idx for idx, degree in in_degree.items() if degree == 0]
        levels: list[list[str]] = []
        processed = 0

        while current:
            levels.append(sorted(self._nodes[idx].name for idx in current))
            processed += len(current)
            upcoming: list[int] = []
            for idx in current:
                for dependent in self._rdeps[idx]:
                    if dependent not in members:
                        continue
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        upcoming.append(dependent)
            current = upcoming

        if processed != len(members):
            raise CycleError(
                [self._nodes[idx].name for idx, degree in in_degree.items() if degree > 0]
            )
        return levels

    def has_cycle(self) -> bool:
        try:
            self.topological_sort()
        except CycleError:
            return True
        return False

    def expand_with_dependencies(self, names: Iterable[str]) -> tuple[list[str], set[str]]:
        """Add every transitive dependency of the requested repositories.

        Returns:
            Tuple of (expanded names sorted, names that were added because a
            requested repository depends on them). External leaves are never
            added since they cannot be released.
        """
        requested = [self._index(name) for name in names]
        seen = set(requested)
        stack = list(requested)
        while stack:
            idx = stack.pop()
            for dep in self._deps[idx]:
                if dep not in seen and not self._nodes[dep].external:
                    seen.add(dep)
                    stack.append(dep)
        auto_added = {self._nodes[idx].name for idx in seen} - {
            self._nodes[idx].name for idx in requested
        }
        return sorted(self._nodes[idx].name for idx in seen), auto_added
