"""
================================================================================
GRAPH MODULE - Provenance Graph, Simplification and Rendering
================================================================================

Exported Classes:
    ProvenanceGraph         - networkx.DiGraph wrapper keyed by node id strings
    ProvenanceGraphBuilder  - BalanceChange list -> ProvenanceGraph
    GraphSimplifier         - collapses closed base-asset round trips
    SimplificationResult    - outcome of one collapse attempt

Exported Functions:
    generate_dot(graph)     - GraphViz DOT text

Usage:
    from lot_tracker.graph import ProvenanceGraphBuilder, generate_dot
    graph = ProvenanceGraphBuilder(base_asset).build(changes)
    dot = generate_dot(graph)

Last Modified: December 2025
================================================================================
"""

from lot_tracker.graph.builder import NodeKind, ProvenanceGraph, ProvenanceGraphBuilder
from lot_tracker.graph.simplifier import GraphSimplifier, SimplificationResult
from lot_tracker.graph.dot import generate_dot

__all__ = [
    'NodeKind',
    'ProvenanceGraph',
    'ProvenanceGraphBuilder',
    'GraphSimplifier',
    'SimplificationResult',
    'generate_dot',
]
