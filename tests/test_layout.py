"""Tests for the canvas layout engine and the creation-path positions."""

from __future__ import annotations

import sqlite3
from typing import Generator

import pytest

from roadmap.config import LayoutConfig
from roadmap.db.connection import get_connection
from roadmap.db.migrations import init_db
from roadmap.db.models import NodeMetadata, NodeType, Position
from roadmap.db.nodes import create_node, get_node, list_nodes
from roadmap.db.projects import create_project
from roadmap.errors import NotFoundError
from roadmap.tree.layout import (
    apply_layout,
    breakdown_positions,
    compute_layout,
    creation_position,
    ordered_phases,
)

CONFIG = LayoutConfig()


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    c = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(c)
    yield c
    c.close()


@pytest.fixture()
def project_id(conn) -> str:
    return create_project(conn, "Thesis").id


@pytest.fixture()
def tree(conn, project_id) -> dict:
    """Two phases; A has steps S1 (with T1, T2) and S2, B is empty."""
    a = create_node(conn, project_id, "A", "phase", metadata=NodeMetadata(phase_index=0))
    b = create_node(conn, project_id, "B", "phase", metadata=NodeMetadata(phase_index=1))
    s1 = create_node(conn, project_id, "S1", "step", parent_id=a.id)
    t1 = create_node(conn, project_id, "T1", "substep", parent_id=s1.id)
    t2 = create_node(conn, project_id, "T2", "substep", parent_id=s1.id)
    s2 = create_node(conn, project_id, "S2", "step", parent_id=a.id)
    return {"A": a, "B": b, "S1": s1, "T1": t1, "T2": t2, "S2": s2}


# ---------------------------------------------------------------------------
# compute_layout
# ---------------------------------------------------------------------------

class TestComputeLayout:
    def test_exact_coordinates(self, conn, project_id, tree):
        positions = compute_layout(list_nodes(conn, project_id), CONFIG)
        by_title = {title: positions[node.id] for title, node in tree.items()}

        assert by_title["A"] == Position(100, 100)
        assert by_title["B"] == Position(1300, 100)
        assert by_title["S1"] == Position(100, 400)
        assert by_title["T1"] == Position(150, 550)
        assert by_title["T2"] == Position(150, 650)
        assert by_title["S2"] == Position(100, 850)

    def test_every_node_is_placed(self, conn, project_id, tree):
        create_node(conn, project_id, "Loose step", "step")
        create_node(conn, project_id, "Loose sub", "substep")
        nodes = list_nodes(conn, project_id)
        assert set(compute_layout(nodes, CONFIG)) == {n.id for n in nodes}

    def test_deterministic(self, conn, project_id, tree):
        nodes = list_nodes(conn, project_id)
        assert compute_layout(nodes, CONFIG) == compute_layout(list(reversed(nodes)), CONFIG)

    def test_does_not_mutate_nodes(self, conn, project_id, tree):
        nodes = list_nodes(conn, project_id)
        before = [n.position for n in nodes]
        compute_layout(nodes, CONFIG)
        assert [n.position for n in nodes] == before

    def test_siblings_never_share_y(self, conn, project_id, tree):
        positions = compute_layout(list_nodes(conn, project_id), CONFIG)
        step_ys = [positions[tree[t].id].y for t in ("S1", "S2")]
        sub_ys = [positions[tree[t].id].y for t in ("T1", "T2")]
        assert len(set(step_ys)) == 2
        assert len(set(sub_ys)) == 2

    def test_phase_index_wins_over_order_index(self, conn, project_id):
        late = create_node(conn, project_id, "Late", "phase", metadata=NodeMetadata(phase_index=1))
        early = create_node(conn, project_id, "Early", "phase", metadata=NodeMetadata(phase_index=0))
        nodes = list_nodes(conn, project_id)

        assert [p.id for p in ordered_phases(nodes)] == [early.id, late.id]
        positions = compute_layout(nodes, CONFIG)
        assert positions[early.id].x == 100
        assert positions[late.id].x == 1300

    def test_unassigned_column_after_last_phase(self, conn, project_id, tree):
        loose = create_node(conn, project_id, "Loose", "step")
        positions = compute_layout(list_nodes(conn, project_id), CONFIG)
        assert positions[loose.id] == Position(2500, 400)

    def test_custom_config(self, conn, project_id, tree):
        config = LayoutConfig(PHASE_START_X=0, PHASE_SPACING_X=500)
        positions = compute_layout(list_nodes(conn, project_id), config)
        assert positions[tree["B"].id] == Position(500, 100)


# ---------------------------------------------------------------------------
# apply_layout
# ---------------------------------------------------------------------------

class TestApplyLayout:
    def test_persists_positions(self, conn, project_id, tree):
        result = apply_layout(conn, project_id, CONFIG)
        assert len(result.updated_ids) == 6
        assert result.failed_ids == []
        assert get_node(conn, tree["T2"].id).position == Position(150, 650)

    def test_second_run_is_a_no_op(self, conn, project_id, tree):
        apply_layout(conn, project_id, CONFIG)
        again = apply_layout(conn, project_id, CONFIG)
        assert again.updated_ids == []
        assert len(again.nodes) == 6

    def test_empty_project(self, conn, project_id):
        result = apply_layout(conn, project_id, CONFIG)
        assert result.nodes == []
        assert result.updated_ids == []

    def test_missing_project_raises(self, conn):
        with pytest.raises(NotFoundError):
            apply_layout(conn, "missing", CONFIG)


# ---------------------------------------------------------------------------
# Creation-path positions
# ---------------------------------------------------------------------------

class TestCreationPosition:
    def test_phase_at_its_index(self):
        assert creation_position([], NodeType.PHASE, phase_index=2, config=CONFIG) == Position(2500, 100)

    def test_phase_defaults_to_next_column(self, conn, project_id, tree):
        nodes = list_nodes(conn, project_id)
        assert creation_position(nodes, NodeType.PHASE, config=CONFIG) == Position(2500, 100)

    def test_step_below_parent_subtree(self, conn, project_id):
        phase = create_node(conn, project_id, "P", "phase", position=Position(100, 100))
        nodes = list_nodes(conn, project_id)
        assert creation_position(nodes, NodeType.STEP, parent=phase, config=CONFIG) == Position(100, 220)

        create_node(conn, project_id, "S", "step", parent_id=phase.id, position=Position(100, 220))
        nodes = list_nodes(conn, project_id)
        assert creation_position(nodes, NodeType.STEP, parent=phase, config=CONFIG) == Position(100, 340)

    def test_substep_is_indented(self, conn, project_id):
        step = create_node(conn, project_id, "S", "step", position=Position(100, 400))
        nodes = list_nodes(conn, project_id)
        assert creation_position(nodes, NodeType.SUBSTEP, parent=step, config=CONFIG) == Position(150, 520)

    def test_parentless_nodes_stack_in_default_column(self, conn, project_id):
        assert creation_position([], NodeType.STEP, config=CONFIG) == Position(100, 100)

        create_node(conn, project_id, "Loose", "step", position=Position(100, 100))
        nodes = list_nodes(conn, project_id)
        assert creation_position(nodes, NodeType.STEP, config=CONFIG) == Position(100, 220)


class TestBreakdownPositions:
    def test_right_of_parent_stacked_down(self, conn, project_id):
        step = create_node(conn, project_id, "S", "step", position=Position(100, 400))
        assert breakdown_positions(step, 3, CONFIG) == [
            Position(400, 400),
            Position(400, 500),
            Position(400, 600),
        ]

    def test_zero_count(self, conn, project_id):
        step = create_node(conn, project_id, "S", "step")
        assert breakdown_positions(step, 0, CONFIG) == []


class TestLayoutConfigFromEnv:
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LAYOUT_PHASE_SPACING_X", "800")
        config = LayoutConfig.from_env()
        assert config.PHASE_SPACING_X == 800
        assert config.PHASE_START_X == 100
