"""Render a list of repository paths as an indented tree.

    readme.md
    src/
    ├── a.ts
    └── b.ts

Entries are sorted by name at every level and directories carry a trailing
slash. The output is deterministic for a given set of paths.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

EMPTY_TREE = "(no files indexed)"

_BRANCH = "├── "
_LAST = "└── "
_PIPE = "│   "
_SPACE = "    "


@dataclass
class TreeNode:
    children: dict[str, TreeNode] = field(default_factory=dict)

    @property
    def is_dir(self) -> bool:
        return bool(self.children)

    def insert(self, parts: list[str]) -> None:
        node = self
        for part in parts:
            node = node.children.setdefault(part, TreeNode())


def build_tree(paths: Iterable[str]) -> TreeNode:
    root = TreeNode()
    for path in paths:
        parts = [p for p in path.split("/") if p]
        if parts:
            root.insert(parts)
    return root


def render_tree(paths: Iterable[str]) -> str:
    """Return the tree text for *paths*, or ``(no files indexed)`` if there are none."""
    root = build_tree(paths)
    if not root.children:
        return EMPTY_TREE

    lines: list[str] = []
    for name in sorted(root.children):
        node = root.children[name]
        lines.append(_label(name, node))
        _render_children(node, "", lines)
    return "\n".join(lines)


def _render_children(node: TreeNode, prefix: str, lines: list[str]) -> None:
    names = sorted(node.children)
    for i, name in enumerate(names):
        child = node.children[name]
        last = i == len(names) - 1
        lines.append(prefix + (_LAST if last else _BRANCH) + _label(name, child))
        if child.is_dir:
            _render_children(child, prefix + (_SPACE if last else _PIPE), lines)


def _label(name: str, node: TreeNode) -> str:
    return f"{name}/" if node.is_dir else name
