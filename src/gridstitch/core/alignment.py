"""
Global alignment of grid images from pairwise matches

- Pruning to the biggest connected component of confident matches
- Reference selection (most connected image)
- Maximum spanning tree for transform propagation (strongest matches first,
  which keeps chains short and well supported)

Transforms map reference-frame pixels into each image's own pixel frame.
"""

import numpy as np
from typing import List, Dict, Tuple
import logging
import heapq
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from gridstitch.ml.feature_detector import FeatureSet
from gridstitch.ml.matcher import PairwiseMatch

logger = logging.getLogger(__name__)


def build_match_graph(
    n_images: int,
    matches: Dict[Tuple[int, int], PairwiseMatch],
    min_confidence: float
) -> Dict[int, List[int]]:
    """
    Build undirected connectivity graph from matches.

    An edge exists when the pair has a transform and a positive confidence
    of at least `min_confidence`.
    """
    graph = {i: [] for i in range(n_images)}
    for (i, j), match in matches.items():
        if i == j or match.H is None:
            continue
        if match.confidence <= 0.0 or match.confidence < min_confidence:
            continue
        if j not in graph[i]:
            graph[i].append(j)
        if i not in graph[j]:
            graph[j].append(i)
    for neighbors in graph.values():
        neighbors.sort()
    return graph


def leave_biggest_component(
    features: List[FeatureSet],
    matches: Dict[Tuple[int, int], PairwiseMatch],
    conf_threshold: float
) -> List[int]:
    """
    Find the largest set of images connected by matches with confidence of
    at least `conf_threshold`.

    Ties between equally large components go to the one holding the lowest
    image index.

    Returns:
        Sorted list of image indices in the biggest component
    """
    n = len(features)
    if n == 0:
        return []

    rows = []
    cols = []
    for (i, j), match in matches.items():
        if i == j or match.confidence < conf_threshold:
            continue
        rows.append(i)
        cols.append(j)

    adjacency = csr_matrix(
        (np.ones(len(rows), dtype=np.int8),
         (np.array(rows, dtype=np.int64), np.array(cols, dtype=np.int64))),
        shape=(n, n)
    )
    n_components, labels = connected_components(adjacency, directed=False)

    sizes = np.bincount(labels, minlength=n_components)
    biggest = int(np.max(sizes))
    # labels are assigned in order of first appearance, so the first label
    # reaching the maximum size holds the lowest index
    best_label = int(np.flatnonzero(sizes == biggest)[0])
    indices = [int(i) for i in np.flatnonzero(labels == best_label)]

    logger.info(f"Biggest component: {len(indices)}/{n} images ({n_components} components, "
                f"threshold={conf_threshold})")
    if len(indices) < n:
        dropped = [i for i in range(n) if i not in indices]
        logger.debug(f"Images {dropped} left out of alignment")
    return indices


def find_reference_image(graph: Dict[int, List[int]]) -> int:
    """Find image with most connections as reference (lowest index on ties)"""
    max_connections = -1
    ref_idx = 0

    for idx in sorted(graph):
        connections = graph[idx]
        if len(connections) > max_connections:
            max_connections = len(connections)
            ref_idx = idx

    return ref_idx


def maximum_spanning_tree(
    n_images: int,
    graph: Dict[int, List[int]],
    matches: Dict[Tuple[int, int], PairwiseMatch],
    start_idx: int
) -> List[Tuple[int, int]]:
    """
    Prim's algorithm over inlier counts; strongest edges are taken first.

    Returns:
        List of (from_node, to_node) tree edges in insertion order
    """
    tree_edges = []
    in_tree = {start_idx}

    # Priority queue: (-weight, from_node, to_node)
    candidates = []
    for neighbor in graph.get(start_idx, []):
        weight = matches[(start_idx, neighbor)].num_inliers
        heapq.heappush(candidates, (-weight, start_idx, neighbor))

    while candidates and len(in_tree) < n_images:
        _, from_node, to_node = heapq.heappop(candidates)

        if to_node in in_tree:
            continue

        in_tree.add(to_node)
        tree_edges.append((from_node, to_node))

        for neighbor in graph.get(to_node, []):
            if neighbor not in in_tree:
                weight = matches[(to_node, neighbor)].num_inliers
                heapq.heappush(candidates, (-weight, to_node, neighbor))

    logger.debug(f"Spanning tree created with {len(tree_edges)} edges for {len(in_tree)} images")
    return tree_edges


def estimate_global_transforms(
    features: List[FeatureSet],
    matches: Dict[Tuple[int, int], PairwiseMatch]
) -> Tuple[bool, List[np.ndarray]]:
    """
    Chain pairwise similarities along the spanning tree into one frame.

    The reference image gets exactly the identity transform.

    Returns:
        Tuple of (success, transforms)
    """
    n_images = len(features)
    if n_images == 0:
        return True, []

    graph = build_match_graph(n_images, matches, min_confidence=0.0)
    ref_idx = find_reference_image(graph)
    logger.info(f"Using image {ref_idx} as reference")

    tree_edges = maximum_spanning_tree(n_images, graph, matches, ref_idx)

    transforms = {ref_idx: np.eye(3, dtype=np.float64)}
    for from_node, to_node in tree_edges:
        # reference -> from_node -> to_node
        transforms[to_node] = matches[(from_node, to_node)].H @ transforms[from_node]

        t = transforms[to_node]
        scale = np.sqrt(t[0, 0]**2 + t[1, 0]**2)
        rotation = np.degrees(np.arctan2(t[1, 0], t[0, 0]))
        logger.debug(f"Image {to_node}: tx={t[0, 2]:.1f}, ty={t[1, 2]:.1f}, "
                     f"scale={scale:.3f}, rotation={rotation:.1f}")

    unplaced = [i for i in range(n_images) if i not in transforms]
    if unplaced:
        logger.warning(f"Images {unplaced} are not reachable from reference {ref_idx}")
        return False, []

    return True, [transforms[i] for i in range(n_images)]
