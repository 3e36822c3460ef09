"""
================================================================================
GRAPH SIMPLIFIER - Collapse Round Trips Through the Base Asset
================================================================================

Finds a region of the provenance graph that starts and ends in the base
asset (e.g. EUR -> BTC -> ETH -> EUR) and replaces its interior with one
synthetic diamond node.

Algorithm:
    1. Anchor: a base-asset lot node whose only inbound edge is a Convert
       from another lot node (a re-entry into the base asset).
    2. Search from the anchor's parents with a stack mirrored by a set:
         - sink shape nodes are skipped
         - a base-asset node with no visited parent ends its branch
         - non-base nodes, and base nodes with several children, push
           their unvisited children (captures divergent spends)
         - every visited node pushes its unvisited parents
       A stack/set size mismatch raises FrontierCorruptionError.
    3. Sources: visited nodes without visited parents.
       Terminals: visited nodes without visited children.
       The region is closed only when every source and terminal is a
       base-asset node; otherwise nothing is changed.
    4. Replace the interior with one diamond node: sources -> synthetic ->
       terminals. The removed region is returned as a subgraph copy.

This only affects rendering and analysis; the ledger never reads the graph.

Last Modified: December 2025
================================================================================
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import networkx as nx

from lot_tracker.core.errors import FrontierCorruptionError
from lot_tracker.graph.builder import EdgeLabel, ProvenanceGraph
from lot_tracker.utils.constants import MAX_COLLAPSES

logger = logging.getLogger("lot_tracker")


@dataclass
class SimplificationResult:
    applied: bool
    reason: str
    anchor: Optional[str] = None
    synthetic_node: Optional[str] = None
    sources: Tuple[str, ...] = ()
    terminals: Tuple[str, ...] = ()
    removed: Optional[nx.DiGraph] = None

    def to_dict(self) -> dict:
        return {
            'applied': self.applied,
            'reason': self.reason,
            'anchor': self.anchor,
            'synthetic_node': self.synthetic_node,
            'sources': list(self.sources),
            'terminals': list(self.terminals),
            'removed_nodes': sorted(self.removed.nodes) if self.removed is not None else [],
        }


class GraphSimplifier:
    """Best-effort collapsing of closed base-asset round trips."""

    def __init__(self, max_collapses: int = MAX_COLLAPSES):
        self.max_collapses = max_collapses

    def is_anchor(self, pg: ProvenanceGraph, node_id: str) -> bool:
        g = pg.graph
        if node_id not in g or not pg.is_base(node_id):
            return False
        in_edges = list(g.in_edges(node_id, data=True))
        if len(in_edges) != 1:
            return False
        parent, _, data = in_edges[0]
        return data.get('label') == EdgeLabel.CONVERT and pg.is_ref(parent)

    def find_anchors(self, pg: ProvenanceGraph) -> List[str]:
        return [n for n in pg.graph.nodes if self.is_anchor(pg, n)]

    def _search(self, pg: ProvenanceGraph, anchor: str) -> set:
        g = pg.graph
        visited = {anchor}
        to_visit = list(g.predecessors(anchor))
        to_visit_set = set(to_visit)

        def push(node_id):
            if node_id in visited or node_id in to_visit_set:
                return
            to_visit.append(node_id)
            to_visit_set.add(node_id)

        while to_visit:
            node_id = to_visit.pop()
            to_visit_set.discard(node_id)
            if pg.is_shape(node_id):
                continue

            visited.add(node_id)
            base = pg.is_base(node_id)

            if base and not any(p in visited for p in g.predecessors(node_id)):
                continue

            if not base or g.out_degree(node_id) > 1:
                for child in g.successors(node_id):
                    push(child)

            for parent in g.predecessors(node_id):
                push(parent)

            if len(to_visit) != len(to_visit_set):
                raise FrontierCorruptionError(
                    f"Search frontier diverged at {node_id}: stack {len(to_visit)}, set {len(to_visit_set)}"
                )
        return visited

    def collapse(self, pg: ProvenanceGraph, anchor_id: Optional[str] = None) -> SimplificationResult:
        """
        Collapse the round trip ending at anchor_id (or the first anchor found).

        Returns:
            SimplificationResult; applied=False leaves the graph untouched
        """
        if anchor_id is None:
            anchors = self.find_anchors(pg)
            if not anchors:
                return SimplificationResult(False, 'no base-asset conversion anchor')
            anchor_id = anchors[0]
        elif not self.is_anchor(pg, anchor_id):
            return SimplificationResult(False, f'{anchor_id} is not a conversion anchor', anchor_id)

        g = pg.graph
        visited = self._search(pg, anchor_id)

        sources, terminals = [], []
        for node_id in visited:
            if not any(p in visited for p in g.predecessors(node_id)):
                sources.append(node_id)
            elif not any(c in visited for c in g.successors(node_id)):
                terminals.append(node_id)
        sources.sort()
        terminals.sort()

        open_ends = [n for n in sources + terminals if not pg.is_base(n)]
        if open_ends:
            return SimplificationResult(
                False, f'region not closed in the base asset at {", ".join(open_ends)}',
                anchor_id, None, tuple(sources), tuple(terminals),
            )
        interior = [n for n in visited if n not in sources and n not in terminals]
        if not interior:
            return SimplificationResult(False, 'nothing between sources and terminals', anchor_id,
                                        None, tuple(sources), tuple(terminals))

        removed = g.subgraph(visited).copy()
        synthetic = pg.add_shape_node('diamond', prefix='collapse')
        g.remove_edges_from([(u, v) for u, v in g.edges if u in visited and v in visited])
        g.remove_nodes_from(interior)
        tooltip = f"Combined: {len(interior)} lot(s) between {len(sources)} source(s) and {len(terminals)} terminal(s)"
        for s in sources:
            pg.merge_edge(s, synthetic, EdgeLabel.CONVERT, tooltip)
        for t in terminals:
            pg.merge_edge(synthetic, t, EdgeLabel.CONVERT, tooltip)

        logger.info(
            f"Collapsed round trip at {anchor_id}: {len(visited)} visited, "
            f"{len(sources)} source(s), {len(terminals)} terminal(s)"
        )
        return SimplificationResult(True, 'collapsed', anchor_id, synthetic, tuple(sources),
                                    tuple(terminals), removed)

    def collapse_all(self, pg: ProvenanceGraph) -> List[SimplificationResult]:
        """Collapse anchors one by one until none applies or max_collapses is reached."""
        results = []
        tried = set()
        applied = 0
        while applied < self.max_collapses:
            candidates = [a for a in self.find_anchors(pg) if a not in tried]
            if not candidates:
                break
            anchor = candidates[0]
            tried.add(anchor)
            result = self.collapse(pg, anchor)
            results.append(result)
            if result.applied:
                applied += 1
        return results
