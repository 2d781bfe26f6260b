"""
Skill-graph validation: adjacency maps, prerequisite closures, cycle
detection, single-cycle pruning, and graph metrics.

Closures and cycles are found on a skill → prerequisite ``networkx.DiGraph``;
topological-sort validation and metrics use the prerequisite → dependent
orientation so path length equals learning depth.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Union

import networkx as nx

from learnpath.models import SkillDependency

logger = logging.getLogger(__name__)

# skill id → prerequisite ids, in first-seen edge order
DependencyGraph = Dict[str, List[str]]


# =========================================================================
# Adjacency
# =========================================================================


def build_dependency_graph(
    skill_ids: Iterable[str],
    dependencies: Iterable[SkillDependency],
) -> DependencyGraph:
    """Adjacency map restricted to *skill_ids*.

    Every skill gets an entry (possibly empty). Edges with either endpoint
    outside the set are dropped.
    """
    graph: DependencyGraph = {sid: [] for sid in skill_ids}
    for dep in dependencies:
        if dep.skill_id not in graph or dep.depends_on_id not in graph:
            continue
        prereqs = graph[dep.skill_id]
        if dep.depends_on_id not in prereqs:
            prereqs.append(dep.depends_on_id)
    return graph


def build_prerequisite_map(
    dependencies: Iterable[SkillDependency],
) -> DependencyGraph:
    """Unrestricted adjacency map over every edge in *dependencies*."""
    graph: DependencyGraph = {}
    for dep in dependencies:
        prereqs = graph.setdefault(dep.skill_id, [])
        if dep.depends_on_id not in prereqs:
            prereqs.append(dep.depends_on_id)
    return graph


def prerequisite_digraph(graph: DependencyGraph) -> nx.DiGraph:
    """``DiGraph`` with skill → prerequisite edges, in adjacency order."""
    G = nx.DiGraph()
    G.add_nodes_from(graph)
    for skill_id, prereqs in graph.items():
        G.add_edges_from((skill_id, prereq) for prereq in prereqs)
    return G


def prerequisite_closure(
    skill_id: str, graph: Union[DependencyGraph, nx.DiGraph]
) -> Set[str]:
    """All skills *skill_id* transitively depends on, itself excluded."""
    G = graph if isinstance(graph, nx.DiGraph) else prerequisite_digraph(graph)
    if skill_id not in G:
        return set()
    return nx.descendants(G, skill_id)


# =========================================================================
# Cycle detection & pruning
# =========================================================================


def detect_cycle(graph: DependencyGraph) -> Optional[List[str]]:
    """Return the first cycle found as a closed path, or ``None``.

    The path starts and ends with the same id, e.g. ``[a, c, b, a]``. Only
    one cycle is reported per call.
    """
    if not graph:
        return None
    G = prerequisite_digraph(graph)
    try:
        edges = nx.find_cycle(G, source=list(graph))
    except nx.NetworkXNoCycle:
        return None
    path = [u for u, _ in edges]
    return path + [path[0]]


def prune_cycle_edges(
    dependencies: Sequence[SkillDependency],
    cycle: Sequence[str],
) -> List[SkillDependency]:
    """Drop exactly the edges whose both endpoints lie on *cycle*."""
    members = set(cycle)
    kept = [
        dep for dep in dependencies
        if not (dep.skill_id in members and dep.depends_on_id in members)
    ]
    logger.debug(
        "Cycle pruning: removed %d edge(s) among %d skill(s).",
        len(dependencies) - len(kept), len(members),
    )
    return kept


# =========================================================================
# Validation
# =========================================================================


def _to_digraph(dependencies: Iterable[SkillDependency]) -> nx.DiGraph:
    # prerequisite → dependent, so path length equals learning depth
    G = nx.DiGraph()
    for dep in dependencies:
        G.add_edge(dep.depends_on_id, dep.skill_id, is_hard=dep.is_hard)
    return G


def validate_dag(dependencies: Iterable[SkillDependency]) -> bool:
    """Verify that edges form a DAG (topological sort succeeds)."""
    G = _to_digraph(dependencies)
    try:
        list(nx.topological_sort(G))
        return True
    except nx.NetworkXUnfeasible:
        return False


# =========================================================================
# Metrics
# =========================================================================


def compute_metrics(
    dependencies: Sequence[SkillDependency],
    n_skills: int,
) -> Dict[str, Any]:
    """Compute graph summary metrics.

    Returns dict with: total_skills, total_edges, avg_out_degree,
    max_depth, isolated_skills_count, is_dag.
    """
    G = _to_digraph(dependencies)

    total_edges = G.number_of_edges()
    nodes_in_graph = G.number_of_nodes()
    isolated_count = max(0, n_skills - nodes_in_graph)
    avg_out = total_edges / nodes_in_graph if nodes_in_graph > 0 else 0.0

    is_dag = nx.is_directed_acyclic_graph(G)
    if total_edges > 0 and is_dag:
        max_depth = nx.dag_longest_path_length(G)
    else:
        max_depth = 0

    return {
        "total_skills": n_skills,
        "total_edges": total_edges,
        "avg_out_degree": round(avg_out, 4),
        "max_depth": max_depth,
        "isolated_skills_count": isolated_count,
        "is_dag": is_dag,
    }
