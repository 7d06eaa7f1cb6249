"""Projection of flat key names into a separator-delimited tree."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

NodeKind = Literal["folder", "leaf"]


@dataclass(frozen=True, slots=True)
class KeyspaceNode:
    name: str
    path: str
    level: int
    kind: NodeKind
    children: tuple["KeyspaceNode", ...] = ()

    @property
    def is_folder(self) -> bool:
        return self.kind == "folder"

    @property
    def child_count(self) -> int:
        return len(self.children)


@dataclass(slots=True)
class _Folder:
    name: str
    path: str
    level: int
    folders: dict[str, "_Folder"] = field(default_factory=dict)
    leaves: dict[str, str] = field(default_factory=dict)
    order: list[tuple[NodeKind, str]] = field(default_factory=list)

    def folder(self, segment: str, separator: str) -> "_Folder":
        child = self.folders.get(segment)
        if child is None:
            path = f"{self.path}{separator}{segment}" if self.level >= 0 else segment
            child = _Folder(name=segment, path=path, level=self.level + 1)
            self.folders[segment] = child
            self.order.append(("folder", segment))
        return child

    def leaf(self, segment: str, key: str) -> None:
        if segment not in self.leaves:
            self.leaves[segment] = key
            self.order.append(("leaf", segment))

    def freeze(self) -> tuple[KeyspaceNode, ...]:
        nodes: list[KeyspaceNode] = []
        for kind, segment in self.order:
            if kind == "folder":
                child = self.folders[segment]
                nodes.append(
                    KeyspaceNode(
                        name=child.name,
                        path=child.path,
                        level=child.level,
                        kind="folder",
                        children=child.freeze(),
                    )
                )
            else:
                nodes.append(
                    KeyspaceNode(name=segment, path=self.leaves[segment], level=self.level + 1, kind="leaf")
                )
        return tuple(nodes)


def project_keyspace(keys: Iterable[str], separator: str = ":") -> list[KeyspaceNode]:
    """Group keys by shared prefixes, keeping first-seen order at every level.

    A key that is also a prefix of other keys shows up twice: as a folder
    holding the longer keys and as a leaf for itself. An empty separator
    yields a flat list of leaves.
    """
    root = _Folder(name="", path="", level=-1)
    for key in keys:
        segments = key.split(separator) if separator else [key]
        node = root
        for segment in segments[:-1]:
            node = node.folder(segment, separator)
        node.leaf(segments[-1], key)
    return list(root.freeze())


def walk(nodes: Iterable[KeyspaceNode]) -> Iterable[KeyspaceNode]:
    """Depth-first pre-order traversal."""
    for node in nodes:
        yield node
        yield from walk(node.children)


def render_lines(nodes: Iterable[KeyspaceNode], *, indent: str = "  ") -> list[str]:
    lines: list[str] = []
    for node in walk(nodes):
        if node.is_folder:
            lines.append(f"{indent * node.level}{node.name}/ ({node.child_count})")
        else:
            lines.append(f"{indent * node.level}{node.name}")
    return lines
