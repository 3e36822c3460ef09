"""
GraphViz DOT text for a provenance graph.

Lot nodes are filled boxes coloured per wallet (fees in grey) with an HTML
label of amount, asset and, for non-base assets, the rate. Sink and
collapse nodes keep their ids and are drawn as point/diamond. A legend
cluster lists one entry per wallet colour.
"""

import re
from typing import Dict

from lot_tracker.decimal_utils import format_lot_amount, format_rate
from lot_tracker.graph.builder import EdgeLabel, ProvenanceGraph
from lot_tracker.utils.constants import (
    DEFAULT_FONT_SIZE,
    FEE_FONT_SIZE,
    FEE_NODE_COLOR,
    WALLET_COLORS,
)

UNLABELLED_EDGES = (EdgeLabel.JOIN, EdgeLabel.SPLIT)


def _escape(text: str) -> str:
    return text.replace('"', '\\"')


def _html_escape(text: str) -> str:
    return text.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')


class DotRenderer:
    """Stateful per render: node id map and wallet colour assignment."""

    def __init__(self, pg: ProvenanceGraph):
        self.pg = pg
        self._ids: Dict[str, str] = {}
        self._colors: Dict[str, str] = {}

    def color_for(self, wallet: str) -> str:
        if wallet not in self._colors:
            self._colors[wallet] = WALLET_COLORS[len(self._colors) % len(WALLET_COLORS)]
        return self._colors[wallet]

    def dot_id(self, node_id: str) -> str:
        if self.pg.is_shape(node_id):
            return node_id
        if node_id not in self._ids:
            self._ids[node_id] = f"ref_{len(self._ids) + 1}"
        return self._ids[node_id]

    def node_line(self, node_id: str) -> str:
        attrs = self.pg.graph.nodes[node_id]
        if self.pg.is_shape(node_id):
            return f"  {self.dot_id(node_id)} [shape={attrs['shape']}];\n"

        ref = attrs['ref']
        wallet = attrs['wallet']
        is_fee = attrs.get('transaction_kind') == 'Fee'
        amount = format_lot_amount(ref.amount, ref.asset.is_fiat)
        rate = format_rate(ref.rate)
        color = FEE_NODE_COLOR if is_fee else self.color_for(wallet)
        size = FEE_FONT_SIZE if is_fee else DEFAULT_FONT_SIZE

        label = f'<<font point-size="{size}">{_html_escape(f"{amount} {ref.asset.name}")}</font>'
        if ref.asset != self.pg.base_asset:
            label += f'<BR/><font point-size="{FEE_FONT_SIZE}">{_html_escape(f"Rate: {rate}")}</font>'
        label += '>'
        tooltip = _escape(f"Wallet: {wallet}, Asset: {ref.asset.name}, Amount: {amount}, Rate: {rate}")
        return f'  {self.dot_id(node_id)} [label={label}, color="{color}", style=filled, tooltip="{tooltip}"];\n'

    def edge_line(self, source: str, target: str, data: dict) -> str:
        line = f"  {self.dot_id(source)} -> {self.dot_id(target)}"
        label = data.get('label')
        if label and label not in UNLABELLED_EDGES:
            line += f' [label="{_escape(label)}"'
        else:
            line += ' ['
        if data.get('tooltip'):
            line += f' edgetooltip="{_escape(data["tooltip"])}"'
        return line + '];\n'

    def render(self) -> str:
        g = self.pg.graph
        # Wallets holding only fee lots still get a legend entry
        for wallet in self.pg.wallets():
            self.color_for(wallet)
        parts = ["digraph BalanceChanges {\n", "  rankdir=LR;\n", "  node [shape=box];\n\n"]
        parts.extend(self.node_line(n) for n in g.nodes)
        parts.extend(self.edge_line(u, v, d) for u, v, d in g.edges(data=True))

        parts.append("\n  // Legend\n")
        parts.append("  subgraph cluster_legend {\n")
        parts.append('    label = "Legend";\n')
        parts.append("    style = filled;\n")
        parts.append("    color = lightgrey;\n")
        for wallet, color in self._colors.items():
            legend_id = "legend_" + re.sub(r'\W+', '_', wallet)
            parts.append(f'    {legend_id} [label="{_escape(wallet)}", color="{color}", style=filled];\n')
        parts.append("  }\n")
        parts.append("}\n")
        return ''.join(parts)


def generate_dot(pg: ProvenanceGraph) -> str:
    return DotRenderer(pg).render()
