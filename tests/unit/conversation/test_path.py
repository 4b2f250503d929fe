from datetime import datetime

import pytest

from src.conversation import (
    ROOT_KEY,
    Message,
    ancestors,
    branch_siblings,
    build_forest,
    get_visible_path,
    initialize_from_target,
    navigate_to,
    next_parent_id,
    select,
)


def _msg(message_id, parent=None):
    return Message(
        message_id=message_id,
        parent_message_id=parent,
        role="user",
        content=message_id,
        created_at=datetime(2025, 1, 1),
    )


def _ids(nodes):
    return [node.message_id for node in nodes]


@pytest.fixture
def forest():
    #   A ── B ── E
    #   │
    #   └─ C ── F
    #   X (second root)
    return build_forest(
        [
            _msg("A"),
            _msg("B", "A"),
            _msg("C", "A"),
            _msg("X"),
            _msg("E", "B"),
            _msg("F", "C"),
        ]
    )


def test_select_switches_branch(forest):
    path = initialize_from_target(forest, "B")

    path = select(path, "A", "C")

    assert _ids(get_visible_path(forest.roots, path)) == ["A", "C"]


def test_initialize_records_every_branch_point(forest):
    path = initialize_from_target(forest, "F")

    assert path == {ROOT_KEY: "A", "A": "C", "C": "F"}


def test_initialize_for_root_message(forest):
    assert initialize_from_target(forest, "X") == {ROOT_KEY: "X"}


def test_initialize_unknown_target_is_empty(forest):
    assert initialize_from_target(forest, "nope") == {}
    assert initialize_from_target(forest, None) == {}


@pytest.mark.parametrize("target", ["A", "B", "C", "E", "F", "X"])
def test_restored_path_ends_at_target(forest, target):
    visible = get_visible_path(forest.roots, initialize_from_target(forest, target))

    assert visible[-1].message_id == target


def test_empty_path_shows_first_root_only(forest):
    assert _ids(get_visible_path(forest.roots, {})) == ["A"]


def test_invalid_root_selection_falls_back_to_first_root(forest):
    assert _ids(get_visible_path(forest.roots, {ROOT_KEY: "ghost", "A": "B"})) == ["A", "B"]


def test_empty_forest_gives_empty_visible_path():
    assert get_visible_path([], {ROOT_KEY: "A"}) == []


def test_selecting_a_non_child_stops_descent(forest):
    path = select(initialize_from_target(forest, "E"), "A", "F")

    assert path["A"] == "F"
    assert _ids(get_visible_path(forest.roots, path)) == ["A"]


def test_select_returns_new_mapping(forest):
    original = initialize_from_target(forest, "E")
    snapshot = dict(original)

    updated = select(original, "A", "C")

    assert original == snapshot
    assert updated is not original


def test_stale_selections_survive_and_are_resurrected(forest):
    path = initialize_from_target(forest, "E")
    path = select(path, "A", "C")
    path = select(path, "C", "F")

    # Switching away from B keeps B's deeper selection around.
    assert path["B"] == "E"
    assert _ids(get_visible_path(forest.roots, path)) == ["A", "C", "F"]

    path = select(path, "A", "B")

    assert _ids(get_visible_path(forest.roots, path)) == ["A", "B", "E"]
    assert path["C"] == "F"


def test_navigate_to_uses_parent_or_root_key(forest):
    path = navigate_to(forest, {}, "X")
    assert path == {ROOT_KEY: "X"}

    path = navigate_to(forest, initialize_from_target(forest, "E"), "C")
    assert _ids(get_visible_path(forest.roots, path)) == ["A", "C"]

    assert navigate_to(forest, {ROOT_KEY: "A"}, "ghost") == {ROOT_KEY: "A"}


def test_navigate_to_orphan_root():
    forest = build_forest([_msg("A"), _msg("B", "A"), _msg("D", "missing-id")])

    path = navigate_to(forest, {}, "D")

    assert path == {ROOT_KEY: "D"}
    assert _ids(get_visible_path(forest.roots, path)) == ["D"]


def test_navigate_to_cycle_rooted_message():
    # P -> Q -> P: Q closes the cycle and becomes a root.
    forest = build_forest([_msg("A"), _msg("P", "Q"), _msg("Q", "P")])
    assert forest.index["Q"].parent is None

    path = navigate_to(forest, initialize_from_target(forest, "A"), "Q")

    assert path[ROOT_KEY] == "Q"
    assert "P" not in path
    assert _ids(get_visible_path(forest.roots, path)) == ["Q"]

    path = navigate_to(forest, path, "P")
    assert path["Q"] == "P"
    assert _ids(get_visible_path(forest.roots, path)) == ["Q", "P"]


def test_branch_siblings(forest):
    assert _ids(branch_siblings(forest, "B")) == ["B", "C"]
    assert _ids(branch_siblings(forest, "X")) == ["A", "X"]
    assert branch_siblings(forest, "ghost") == []


def test_ancestors_chain(forest):
    assert _ids(ancestors(forest, "F")) == ["A", "C", "F"]
    assert ancestors(forest, "ghost") == []


def test_next_parent_id(forest):
    visible = get_visible_path(forest.roots, initialize_from_target(forest, "E"))

    assert next_parent_id(visible) == "E"
    assert next_parent_id([]) is None


def test_orphan_branch_is_navigable():
    forest = build_forest([_msg("A"), _msg("B", "A"), _msg("D", "missing-id"), _msg("G", "D")])

    path = initialize_from_target(forest, "G")

    assert path == {ROOT_KEY: "D", "D": "G"}
    assert _ids(get_visible_path(forest.roots, path)) == ["D", "G"]
