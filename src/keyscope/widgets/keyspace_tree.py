"""Keyspace tree panel rebuilt from the scheduler's projected key tree."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Tree

from keyscope.keyspace.tree import KeyspaceNode
from keyscope.messages import InspectKey
from keyscope.runtime_logging import get_runtime_logger

MAX_RENDERED_NODES = 2000


class KeyspaceTreePanel(Vertical):
    DEFAULT_CSS = """
    KeyspaceTreePanel {
        height: 1fr;
    }

    KeyspaceTreePanel Tree {
        height: 1fr;
        border: round $surface-lighten-2;
    }
    """

    def __init__(self, label: str = "keyspace", *, id: str | None = None) -> None:  # noqa: A002
        self.label = label
        self.rendered_count = 0
        self.truncated = False
        self.logger = get_runtime_logger()
        super().__init__(id=id)

    def compose(self) -> ComposeResult:
        yield Tree(self.label, id="tree")

    def show(self, nodes: Iterable[KeyspaceNode], *, label: str | None = None) -> None:
        if label is not None:
            self.label = label
        tree = self.query_one(Tree)
        expanded_paths = self._collect_expanded_paths(tree.root)
        tree.clear()
        root = tree.root
        root.set_label(self.label)
        root.data = {"path": "", "is_folder": True}

        self.rendered_count = 0
        self.truncated = False
        # Bounded so a large session keeps the widget responsive.
        self._add_nodes(root, nodes, expanded_paths)
        root.expand()
        self.logger.debug(
            "keyspace_tree.rendered",
            node_count=self.rendered_count,
            truncated=self.truncated,
        )

    def on_tree_node_selected(self, event: Tree.NodeSelected) -> None:
        data = event.node.data if isinstance(event.node.data, dict) else {}
        if data.get("is_folder", True):
            return
        event.stop()
        self.post_message(InspectKey(key=str(data["path"])))

    def _add_nodes(self, parent: Any, nodes: Iterable[KeyspaceNode], expanded_paths: set[str]) -> None:
        for node in nodes:
            if self.rendered_count >= MAX_RENDERED_NODES:
                self.truncated = True
                return
            self.rendered_count += 1
            if node.is_folder:
                branch = parent.add(
                    Text(f"{node.name}/ ({node.child_count})"),
                    data={"path": node.path, "is_folder": True},
                    expand=node.path in expanded_paths,
                )
                self._add_nodes(branch, node.children, expanded_paths)
            else:
                parent.add_leaf(Text(node.name), data={"path": node.path, "is_folder": False})

    def _collect_expanded_paths(self, node: Any) -> set[str]:
        expanded: set[str] = set()
        data = node.data if isinstance(getattr(node, "data", None), dict) else {}
        if node.is_expanded and data.get("path"):
            expanded.add(str(data["path"]))
        for child in node.children:
            expanded.update(self._collect_expanded_paths(child))
        return expanded
