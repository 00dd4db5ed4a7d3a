"""
Rendering of compiled graphs.

Example:
    >>> runnable = chain.compile()
    >>> print(to_mermaid(runnable))
    graph TD
        __start__((Start))
        node_0[node_0: lambda]
        __end__((End))
        __start__-->node_0
        node_0-->__end__

``describe`` returns the same structure as plain data for JSON output.
"""

from typing import Any, Dict, List

from composeflow.compose.graph import END, START
from composeflow.compose.types import NodeKind, type_name

_ID_UNSAFE = " -.()[]{}<>|:;,&#"


def _escape_id(name: str) -> str:
    """Escape special characters in node IDs."""
    return "".join("_" if ch in _ID_UNSAFE else ch for ch in name)


def _escape_label(name: str) -> str:
    return name.replace('"', "'").replace("|", "/")


def _edge_label(data: Dict[str, Any]) -> str:
    if data.get("branch_value") is not None:
        return str(data["branch_value"])
    if data.get("output_key"):
        return str(data["output_key"])
    if data.get("check_type") is not None:
        return f"check {type_name(data['check_type'])}"
    return ""


def to_mermaid(runnable: Any) -> str:
    """
    Generate Mermaid graph syntax for a compiled graph.

    Branch nodes are drawn as diamonds and joins as circles; conditional
    edges are labelled with the predicate result selecting them, edges into a
    join with their output key.
    """
    compiled = runnable.compiled
    lines = ["graph TD"]
    for key in compiled.order:
        node_id = _escape_id(key)
        if key == START:
            lines.append(f"    {node_id}((Start))")
            continue
        if key == END:
            lines.append(f"    {node_id}((End))")
            continue
        node = compiled.nodes[key]
        label = _escape_label(f"{key}: {node.kind.value}")
        if node.kind == NodeKind.BRANCH:
            lines.append(f"    {node_id}{{{label}}}")
        elif node.kind == NodeKind.PARALLEL_JOIN:
            lines.append(f"    {node_id}(({label}))")
        else:
            lines.append(f"    {node_id}[{label}]")

    for u, v, data in compiled.graph.edges(data=True):
        label = _edge_label(data)
        if label:
            lines.append(f"    {_escape_id(u)}-->|{_escape_label(label)}|{_escape_id(v)}")
        else:
            lines.append(f"    {_escape_id(u)}-->{_escape_id(v)}")
    return "\n".join(lines)


def to_dot(runnable: Any) -> str:
    """Generate Graphviz DOT source for a compiled graph."""
    compiled = runnable.compiled
    lines = [f'digraph "{compiled.name}" {{', "    rankdir=TB;"]
    for key in compiled.order:
        if key in (START, END):
            lines.append(f'    "{key}" [shape=circle];')
            continue
        node = compiled.nodes[key]
        shape = {
            NodeKind.BRANCH: "diamond",
            NodeKind.PARALLEL_JOIN: "circle",
            NodeKind.GRAPH: "box3d",
        }.get(node.kind, "box")
        label = f"{key}\\n{node.kind.value}"
        lines.append(f'    "{key}" [shape={shape}, label="{label}"];')
    for u, v, data in compiled.graph.edges(data=True):
        label = _edge_label(data)
        style = ", style=dashed" if data.get("branch") else ""
        if label:
            lines.append(f'    "{u}" -> "{v}" [label="{label}"{style}];')
        else:
            lines.append(f'    "{u}" -> "{v}"{" [style=dashed]" if style else ""};')
    lines.append("}")
    return "\n".join(lines)


def describe(runnable: Any) -> Dict[str, Any]:
    """
    Describe a compiled graph as JSON-able data.

    Nested compiled subgraphs are described recursively under ``subgraph``.
    """
    compiled = runnable.compiled
    nodes: List[Dict[str, Any]] = []
    for key in compiled.order:
        if key in (START, END):
            continue
        node = compiled.nodes[key]
        entry: Dict[str, Any] = {
            "key": key,
            "kind": node.kind.value,
            "name": node.name,
            "input_type": type_name(node.input_type),
            "output_type": type_name(node.output_type),
            "user_key": node.user_key,
            "methods": dict(node.methods),
        }
        if node.branch is not None:
            entry["targets"] = dict(node.branch.targets)
            entry["stream"] = node.branch.stream
        if node.subgraph is not None and hasattr(node.subgraph, "compiled"):
            entry["subgraph"] = describe(node.subgraph)
        nodes.append(entry)

    edges = []
    for u, v, data in compiled.graph.edges(data=True):
        edge: Dict[str, Any] = {"from": u, "to": v}
        if data.get("output_key"):
            edge["output_key"] = data["output_key"]
        if data.get("branch"):
            edge["branch"] = data["branch"]
            edge["branch_value"] = data.get("branch_value")
        if data.get("check_type") is not None:
            edge["runtime_check"] = type_name(data["check_type"])
        edges.append(edge)

    return {
        "name": compiled.name,
        "input_type": type_name(compiled.input_type),
        "output_type": type_name(compiled.output_type),
        "max_run_steps": compiled.max_run_steps,
        "nodes": nodes,
        "edges": edges,
    }
