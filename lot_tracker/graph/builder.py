"""
================================================================================
PROVENANCE GRAPH BUILDER - Audit Trail to Directed Graph
================================================================================

Turns the BalanceChange list into a networkx.DiGraph of lots.

Node Keys:
    "<wallet>-<ref id>"   lot node   kind=NodeKind.REF
                          attrs: ref, wallet, transaction_kind
    "shape_<n>"           sink node  kind=NodeKind.SHAPE
                          attrs: shape ('point' | 'diamond'), shape_id

Change Mapping:
    Create   lot node (plus a base-asset source node and a Convert edge when
             the lot was bought with the base asset)
    Remove   lot node -> sink node, edge labelled with the transaction kind
             (diamond for withdrawals, point otherwise; no sink for fees)
    Move     from-wallet node -> to-wallet node, label Transfer
             (moves within one wallet are not drawn)
    Split    original -> each piece, label Split; the last piece carries the
             transaction kind
    Join     each original -> merged lot, label Join
    Convert  each source lot -> resulting lot, label Convert
             (for both, the source lots carry the transaction kind)

Adding a node or edge that already exists merges into it.

Last Modified: December 2025
================================================================================
"""

import logging
from enum import Enum
from typing import Iterable, Optional

import networkx as nx

from lot_tracker.core.errors import UnknownEnumValueError
from lot_tracker.core.models import (
    Asset,
    BalanceChange,
    ConvertChange,
    CreateChange,
    JoinChange,
    LedgerEntryType,
    MoveChange,
    Ref,
    RemoveChange,
    SingleTransaction,
    SplitChange,
    TradeTransaction,
    TransferTransaction,
    transaction_kind,
)
from lot_tracker.core.settings import EngineSettings
from lot_tracker.decimal_utils import decimal_to_str

logger = logging.getLogger("lot_tracker")


class NodeKind(Enum):
    REF = 'ref'
    SHAPE = 'shape'


class EdgeLabel:
    TRANSFER = 'Transfer'
    CONVERT = 'Convert'
    JOIN = 'Join'
    SPLIT = 'Split'


def ref_node_id(wallet: str, ref: Ref) -> str:
    return f"{wallet}-{ref.ref_id}"


def transaction_tooltip(tx) -> str:
    if isinstance(tx, SingleTransaction):
        return f"Single: {tx.entry.kind.label}"
    if isinstance(tx, TradeTransaction):
        return (f"Trade: {decimal_to_str(tx.spend.amount)} {tx.spend.asset.name} -> "
                f"{decimal_to_str(tx.receive.amount)} {tx.receive.asset.name}")
    if isinstance(tx, TransferTransaction):
        return (f"Transfer: {decimal_to_str(tx.source.amount)} {tx.source.asset.name} "
                f"from {tx.source.wallet} to {tx.destination.wallet}")
    raise UnknownEnumValueError(f"Unknown transaction variant: {type(tx).__name__}")


class ProvenanceGraph:
    """DiGraph of lot and sink nodes keyed by strings."""

    def __init__(self, base_asset: Optional[Asset] = None):
        self.graph = nx.DiGraph()
        self.base_asset = base_asset or EngineSettings().base_asset
        self._shape_count = 0

    # -- nodes ---------------------------------------------------------

    def merge_ref_node(self, wallet: str, ref: Ref, kind: Optional[str] = None) -> str:
        node_id = ref_node_id(wallet, ref)
        if node_id in self.graph:
            attrs = self.graph.nodes[node_id]
            if attrs.get('transaction_kind') is None and kind is not None:
                attrs['transaction_kind'] = kind
        else:
            self.graph.add_node(node_id, kind=NodeKind.REF, ref=ref, wallet=wallet, transaction_kind=kind)
        return node_id

    def add_shape_node(self, shape: str, prefix: str = 'shape') -> str:
        node_id = f"{prefix}_{self._shape_count}"
        self._shape_count += 1
        self.graph.add_node(node_id, kind=NodeKind.SHAPE, shape=shape, shape_id=node_id)
        return node_id

    def merge_edge(self, source: str, target: str, label: str, tooltip: str = ''):
        if self.graph.has_edge(source, target):
            return
        self.graph.add_edge(source, target, label=label, tooltip=tooltip)

    # -- queries -------------------------------------------------------

    def is_ref(self, node_id: str) -> bool:
        return self.graph.nodes[node_id].get('kind') is NodeKind.REF

    def is_shape(self, node_id: str) -> bool:
        return self.graph.nodes[node_id].get('kind') is NodeKind.SHAPE

    def is_base(self, node_id: str) -> bool:
        return self.is_ref(node_id) and self.graph.nodes[node_id]['ref'].asset == self.base_asset

    def ref_nodes(self):
        return [n for n in self.graph.nodes if self.is_ref(n)]

    def wallets(self):
        seen = []
        for n in self.ref_nodes():
            wallet = self.graph.nodes[n]['wallet']
            if wallet not in seen:
                seen.append(wallet)
        return seen

    def __contains__(self, node_id) -> bool:
        return node_id in self.graph

    def __len__(self) -> int:
        return self.graph.number_of_nodes()


class ProvenanceGraphBuilder:
    """Applies BalanceChange records to a ProvenanceGraph."""

    def __init__(self, base_asset: Optional[Asset] = None):
        self.base_asset = base_asset or EngineSettings().base_asset

    def build(self, changes: Iterable[BalanceChange]) -> ProvenanceGraph:
        graph = ProvenanceGraph(self.base_asset)
        for bc in changes:
            self.add_balance_change(graph, bc)
        logger.info(
            f"Provenance graph: {graph.graph.number_of_nodes()} nodes, {graph.graph.number_of_edges()} edges"
        )
        return graph

    def add_balance_change(self, graph: ProvenanceGraph, bc: BalanceChange):
        tx = bc.transaction
        kind = transaction_kind(tx)
        tooltip = transaction_tooltip(tx)

        for change in bc.changes:
            if isinstance(change, CreateChange):
                node = graph.merge_ref_node(change.wallet, change.ref)
                if isinstance(tx, TradeTransaction) and tx.spend.asset == self.base_asset:
                    spend = tx.spend
                    base_ref = Ref(spend.global_id, spend.asset, (spend.global_id,), -spend.amount, spend.date)
                    source = graph.merge_ref_node(spend.wallet, base_ref, kind)
                    graph.merge_edge(source, node, EdgeLabel.CONVERT, tooltip)

            elif isinstance(change, RemoveChange):
                node = graph.merge_ref_node(change.wallet, change.ref, kind)
                is_fee = isinstance(tx, SingleTransaction) and tx.entry.kind is LedgerEntryType.FEE
                if not is_fee:
                    is_withdrawal = isinstance(tx, SingleTransaction) and tx.entry.kind is LedgerEntryType.WITHDRAWAL
                    sink = graph.add_shape_node('diamond' if is_withdrawal else 'point')
                    graph.merge_edge(node, sink, kind, tooltip)

            elif isinstance(change, MoveChange):
                if change.from_wallet == change.to_wallet:
                    continue
                source = graph.merge_ref_node(change.from_wallet, change.ref)
                target = graph.merge_ref_node(change.to_wallet, change.ref)
                graph.merge_edge(source, target, EdgeLabel.TRANSFER, tooltip)

            elif isinstance(change, SplitChange):
                source = graph.merge_ref_node(change.wallet, change.original_ref)
                last = len(change.resulting_refs) - 1
                for i, piece in enumerate(change.resulting_refs):
                    target = graph.merge_ref_node(change.wallet, piece, kind if i == last else None)
                    graph.merge_edge(source, target, EdgeLabel.SPLIT, tooltip)

            elif isinstance(change, JoinChange):
                target = graph.merge_ref_node(change.wallet, change.resulting_ref)
                for original in change.original_refs:
                    source = graph.merge_ref_node(change.wallet, original, kind)
                    graph.merge_edge(source, target, EdgeLabel.JOIN, tooltip)

            elif isinstance(change, ConvertChange):
                target = graph.merge_ref_node(change.wallet, change.to_ref)
                for original in change.from_refs:
                    source = graph.merge_ref_node(change.wallet, original, kind)
                    graph.merge_edge(source, target, EdgeLabel.CONVERT, tooltip)

            else:
                raise UnknownEnumValueError(f"Unknown change variant: {type(change).__name__}")
