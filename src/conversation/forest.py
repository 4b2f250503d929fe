# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

from __future__ import annotations

import logging
from typing import Iterable

from .models import Forest, Message, MessageNode

logger = logging.getLogger(__name__)


def build_forest(messages: Iterable[Message]) -> Forest:
    """Arrange a flat message collection into a forest of reply trees.

    Messages are expected in chronological order; children keep that order.
    A message whose parent is null, unknown, or would close a cycle becomes a root.
    """
    forest = Forest()
    ordered: list[MessageNode] = []

    for message in messages:
        if message.message_id in forest.index:
            logger.warning("Duplicate message id %s ignored", message.message_id)
            continue
        node = MessageNode(message=message)
        forest.index[message.message_id] = node
        ordered.append(node)

    for node in ordered:
        parent_id = node.message.parent_message_id
        parent = forest.get(parent_id)

        if parent is None:
            if parent_id is not None:
                logger.warning(
                    "Message %s references missing parent %s; treating as root",
                    node.message_id,
                    parent_id,
                )
            forest.roots.append(node)
            continue

        if _is_ancestor_or_self(node, parent):
            logger.warning(
                "Cyclic parent chain at message %s; treating as root",
                node.message_id,
            )
            forest.roots.append(node)
            continue

        node.parent = parent
        parent.children.append(node)

    return forest


def _is_ancestor_or_self(candidate: MessageNode, start: MessageNode) -> bool:
    visited: set[str] = set()
    current = start
    while current is not None:
        if current is candidate:
            return True
        if current.message_id in visited:
            return False
        visited.add(current.message_id)
        current = current.parent
    return False
