# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Selection of the visible branch through a message forest.

A message path maps a branch key (the id of a parent message, or ``ROOT_KEY`` for
the top level) to the id of the child chosen at that branch. Paths are plain dicts
treated as values: every operation here returns a new dict.
"""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Sequence

from .models import Forest, MessageNode

logger = logging.getLogger(__name__)

ROOT_KEY = "root"

MessagePath = Dict[str, str]


def initialize_from_target(forest: Forest, target_message_id: Optional[str]) -> MessagePath:
    """Build the path that makes ``target_message_id`` the last visible message."""
    node = forest.get(target_message_id)
    if node is None:
        return {}

    path: MessagePath = {}
    visited = {node.message_id}
    while node.parent is not None and node.parent.message_id not in visited:
        path[node.parent.message_id] = node.message_id
        node = node.parent
        visited.add(node.message_id)
    path[ROOT_KEY] = node.message_id
    return path


def get_visible_path(roots: Sequence[MessageNode], path: Mapping[str, str]) -> list[MessageNode]:
    if not roots:
        return []

    current = _find_child(roots, path.get(ROOT_KEY)) or roots[0]
    visible = [current]
    visited = {current.message_id}

    while True:
        child = _find_child(current.children, path.get(current.message_id))
        if child is None or child.message_id in visited:
            break
        visible.append(child)
        visited.add(child.message_id)
        current = child
    return visible


def select(path: Mapping[str, str], parent_key: str, child_id: str) -> MessagePath:
    """Choose ``child_id`` at ``parent_key``.

    Selections stored deeper in the previously visible branch are left in place,
    so switching back to that branch later restores them.
    """
    updated = dict(path)
    updated[parent_key] = child_id
    return updated


def navigate_to(forest: Forest, path: Mapping[str, str], message_id: str) -> MessagePath:
    """Select ``message_id`` at its branch point in ``forest``.

    The branch key is the parent the message is attached to in the forest, so
    orphans and cycle-broken messages are selected under ``ROOT_KEY``.
    """
    node = forest.get(message_id)
    if node is None:
        return dict(path)
    parent_key = node.parent.message_id if node.parent is not None else ROOT_KEY
    return select(path, parent_key, node.message_id)


def branch_siblings(forest: Forest, message_id: str) -> list[MessageNode]:
    """Alternatives to ``message_id`` at its branch point, including itself."""
    node = forest.get(message_id)
    if node is None:
        return []
    if node.parent is None:
        return list(forest.roots)
    return list(node.parent.children)


def ancestors(forest: Forest, message_id: Optional[str]) -> list[MessageNode]:
    """Root-to-target chain ending at ``message_id``."""
    path = initialize_from_target(forest, message_id)
    if not path:
        return []
    return get_visible_path(forest.roots, path)


def next_parent_id(visible: Sequence[MessageNode]) -> Optional[str]:
    return visible[-1].message_id if visible else None


def _find_child(nodes: Sequence[MessageNode], message_id: Optional[str]) -> Optional[MessageNode]:
    if message_id is None:
        return None
    for node in nodes:
        if node.message_id == message_id:
            return node
    return None
