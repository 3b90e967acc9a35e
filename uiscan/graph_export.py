"""Graph export helpers for DOT output."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

from .graph import ModuleGraph
from .models import ComponentNode


def render_dot(graph: ModuleGraph, focus: str = "", include_external: bool = True) -> str:
    nodes = {
        path: node for path, node in graph.nodes.items()
        if include_external or not node.opaque
    }
    edges = [
        {"src": node.path, "dst": child}
        for node in nodes.values()
        for child in node.children
        if child in nodes
    ]
    selected = _focused_subgraph(nodes, edges, focus)
    entries = set(graph.entry_points)

    lines = ["digraph Components {"]
    lines.append("  rankdir=LR;")

    for path in selected["nodes"]:
        node = nodes[path]
        attrs = [f'label="{_esc(_label(node))}"']
        if node.opaque:
            attrs.append("shape=box")
            attrs.append("style=dashed")
        elif path in entries:
            attrs.append("shape=doubleoctagon")
        if node.errors or node.parse_error:
            attrs.append("color=red")
        lines.append(f'  "{_esc(path)}" [{", ".join(attrs)}];')

    for edge in sorted(selected["edges"], key=lambda e: (e["src"], e["dst"])):
        lines.append(f'  "{_esc(edge["src"])}" -> "{_esc(edge["dst"])}";')

    lines.append("}")
    return "\n".join(lines) + "\n"


def export_dot(graph: ModuleGraph, output_file: Optional[Path] = None, focus: str = "",
               include_external: bool = True) -> str:
    doc = render_dot(graph, focus, include_external)
    if output_file is not None:
        output_file.write_text(doc, encoding="utf-8")
    return doc


def _label(node: ComponentNode) -> str:
    if node.opaque:
        return node.name
    return f"{node.name}\\n{node.path}"


def _focused_subgraph(nodes: Dict[str, ComponentNode], edges: List[dict], focus: str) -> Dict[str, List]:
    if not focus:
        return {"nodes": sorted(nodes), "edges": edges}

    focus_ids = {
        path
        for path, node in nodes.items()
        if focus in path or focus == node.name
    }

    if not focus_ids:
        return {"nodes": sorted(nodes), "edges": edges}

    edge_subset = [e for e in edges if e["src"] in focus_ids or e["dst"] in focus_ids]
    node_subset = set(focus_ids)
    for e in edge_subset:
        node_subset.add(e["src"])
        node_subset.add(e["dst"])
    return {"nodes": sorted(node_subset), "edges": edge_subset}


def _esc(text: str) -> str:
    return text.replace('"', '\\"')
