import logging
from collections import defaultdict
from typing import Dict, Iterator, List, Optional, Sequence

import networkx as nx
import numpy as np

from preprocessing import TOOL_NAME, assign_record_ids

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _as_square_matrix(distance_matrix) -> np.ndarray:
    matrix = np.asarray(distance_matrix, dtype=np.float64)
    if matrix.size == 0:
        return matrix.reshape(0, 0)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"Distance matrix must be square, got shape {matrix.shape}")
    return matrix


def _leaf(index: int, label: str) -> Dict:
    return {
        "id": index,
        "name": label,
        "children": [],
        "height": 0.0,
        "is_leaf": True,
        "representative": index,
    }


def perform_agglomerative_clustering(distance_matrix, labels: Sequence[str]) -> Optional[Dict]:
    """
    Merge the closest pair of clusters until a single root remains.

    Clusters are compared through the stored distance between their
    representative records; merged distances are not recomputed. A merged
    cluster is represented by the representative of its first child.

    Args:
        distance_matrix: Square (n, n) distance matrix
        labels: One label per row of the matrix

    Returns:
        Root cluster node, a single leaf for one label, or None for none
    """
    matrix = _as_square_matrix(distance_matrix)
    n = matrix.shape[0]
    if len(labels) != n:
        raise ValueError(f"Got {len(labels)} labels for a {n}x{n} distance matrix")
    if n == 0:
        return None

    clusters = [_leaf(i, label) for i, label in enumerate(labels)]
    merges = 0

    while len(clusters) > 1:
        min_distance = np.inf
        min_i = -1
        min_j = -1

        for i in range(len(clusters)):
            rep_i = clusters[i]["representative"]
            for j in range(i + 1, len(clusters)):
                distance = matrix[rep_i, clusters[j]["representative"]]
                if distance < min_distance:
                    min_distance = distance
                    min_i = i
                    min_j = j

        # Only reachable when every remaining distance is NaN
        if min_i < 0:
            min_i, min_j = 0, 1
            min_distance = float(matrix[clusters[0]["representative"], clusters[1]["representative"]])

        first = clusters[min_i]
        second = clusters[min_j]
        merged = {
            "id": n + merges,
            "name": f"Cluster {len(clusters) - 1}",
            "children": [first, second],
            "height": float(min_distance),
            "is_leaf": False,
            "representative": first["representative"],
        }
        logger.debug(f"Merged {first['name']} and {second['name']} at {min_distance:.4f}")

        clusters = [c for k, c in enumerate(clusters) if k != min_i and k != min_j]
        clusters.append(merged)
        merges += 1

    logger.info(f"Built dendrogram over {n} leaves with {merges} merges")
    return clusters[0]


# Short name used by callers that only need the dendrogram
cluster = perform_agglomerative_clustering


def iter_leaves(node: Optional[Dict]) -> Iterator[Dict]:
    """Yield the leaves under ``node`` from left to right."""
    if node is None:
        return
    stack = [node]
    while stack:
        current = stack.pop()
        if current["is_leaf"]:
            yield current
        else:
            stack.extend(reversed(current["children"]))


def count_merges(node: Optional[Dict]) -> int:
    """Number of internal nodes in a dendrogram."""
    if node is None or node["is_leaf"]:
        return 0
    return 1 + sum(count_merges(child) for child in node["children"])


def cut_dendrogram(node: Optional[Dict], height: float) -> List[List[int]]:
    """
    Flatten a dendrogram into groups merged at or below ``height``.

    Args:
        node: Root cluster node
        height: Cut height

    Returns:
        Groups of leaf ids, left to right
    """
    if node is None:
        return []
    if node["is_leaf"] or node["height"] <= height:
        return [[leaf["id"] for leaf in iter_leaves(node)]]
    groups = []
    for child in node["children"]:
        groups.extend(cut_dendrogram(child, height))
    return groups


def dendrogram_to_dict(node: Optional[Dict]) -> Optional[Dict]:
    """JSON-serializable copy of a dendrogram."""
    if node is None:
        return None
    return {
        "id": int(node["id"]),
        "name": str(node["name"]),
        "height": float(node["height"]),
        "is_leaf": bool(node["is_leaf"]),
        "children": [dendrogram_to_dict(child) for child in node["children"]],
    }


def generate_connections(records: List[Dict], distance_matrix, threshold: float = 0.7,
                         record_ids: Optional[List[str]] = None) -> Dict[str, List[str]]:
    """
    Connect every pair of records whose similarity reaches ``threshold``.

    Args:
        records: Tool records
        distance_matrix: Distance matrix aligned with ``records``
        threshold: Minimum similarity (1 - distance) for a connection
        record_ids: Identifiers aligned with ``records``, derived when omitted

    Returns:
        Mapping of record id to the ids it connects to
    """
    if record_ids is None:
        record_ids = assign_record_ids(records)
    if len(record_ids) != len(records):
        raise ValueError(f"Got {len(record_ids)} ids for {len(records)} records")

    n = len(records)
    matrix = _as_square_matrix(distance_matrix)
    if matrix.shape[0] != n:
        raise ValueError(f"Distance matrix of size {matrix.shape[0]} does not match {n} records")

    connections = {record_id: [] for record_id in record_ids}
    n_edges = 0

    for i in range(n):
        for j in range(i + 1, n):
            if 1.0 - matrix[i, j] >= threshold:
                connections[record_ids[i]].append(record_ids[j])
                connections[record_ids[j]].append(record_ids[i])
                n_edges += 1

    logger.info(f"Generated {n_edges} connections between {n} tools at threshold {threshold}")
    return connections


def build_connection_graph(record_ids: List[str], connections: Dict[str, List[str]],
                           distance_matrix=None, records: Optional[List[Dict]] = None) -> nx.Graph:
    """
    Build an undirected networkx graph from a connection map.

    Args:
        record_ids: Identifiers in matrix order
        connections: Connection map from generate_connections
        distance_matrix: Optional distance matrix for edge similarity weights
        records: Optional records whose names become node attributes

    Returns:
        Graph with one node per record id
    """
    graph = nx.Graph()
    index = {record_id: i for i, record_id in enumerate(record_ids)}
    matrix = _as_square_matrix(distance_matrix) if distance_matrix is not None else None

    for i, record_id in enumerate(record_ids):
        name = records[i].get(TOOL_NAME, "") if records is not None else ""
        graph.add_node(record_id, name=name)

    for record_id, neighbors in connections.items():
        for neighbor in neighbors:
            if graph.has_edge(record_id, neighbor):
                continue
            if matrix is not None:
                weight = 1.0 - float(matrix[index[record_id], index[neighbor]])
            else:
                weight = 1.0
            graph.add_edge(record_id, neighbor, similarity=weight)

    return graph


class ToolClusterer:
    """
    Derives the connection graph, dendrogram and groups for a tool set.
    """
    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize the clusterer with configuration settings.

        Args:
            config: Dictionary containing configuration parameters
        """
        self.config = config or {}
        self.similarity_threshold = self.config.get("similarity_threshold", 0.7)
        self.min_group_size = self.config.get("min_group_size", 2)

    def connect(self, records: List[Dict], distance_matrix,
                record_ids: Optional[List[str]] = None) -> Dict[str, List[str]]:
        """Connection map at the configured similarity threshold."""
        return generate_connections(records, distance_matrix, self.similarity_threshold, record_ids)

    def build_dendrogram(self, distance_matrix, labels: Sequence[str]) -> Optional[Dict]:
        """Dendrogram over ``labels``."""
        return perform_agglomerative_clustering(distance_matrix, labels)

    def extract_groups(self, graph: nx.Graph) -> List[Dict]:
        """
        Extract connected tool groups from a connection graph.

        Args:
            graph: Graph from build_connection_graph

        Returns:
            Group dictionaries, largest first
        """
        groups = []
        components = sorted(nx.connected_components(graph), key=lambda c: (-len(c), sorted(c)))

        for i, component in enumerate(components):
            if len(component) < self.min_group_size:
                continue

            subgraph = graph.subgraph(component)
            centrality = nx.degree_centrality(subgraph)
            ranked = sorted(component, key=lambda node: (-centrality.get(node, 0), node))

            similarities = [data.get("similarity", 1.0) for _, _, data in subgraph.edges(data=True)]
            groups.append({
                "group_id": f"group_{i}",
                "size": len(component),
                "central_tool": ranked[0],
                "members": ranked,
                "density": nx.density(subgraph),
                "average_similarity": sum(similarities) / len(similarities) if similarities else 0.0,
            })

        return groups

    def summarize_degrees(self, connections: Dict[str, List[str]]) -> Dict[str, float]:
        """Basic degree statistics for a connection map."""
        degrees = [len(neighbors) for neighbors in connections.values()]
        if not degrees:
            return {"tools": 0, "edges": 0, "isolated": 0, "mean_degree": 0.0, "max_degree": 0}

        histogram = defaultdict(int)
        for degree in degrees:
            histogram[degree] += 1

        return {
            "tools": len(degrees),
            "edges": sum(degrees) // 2,
            "isolated": histogram.get(0, 0),
            "mean_degree": sum(degrees) / len(degrees),
            "max_degree": max(degrees),
        }
