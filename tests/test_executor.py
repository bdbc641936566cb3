"""Tests for applying agent action proposals to the store.

The chat model is mocked at ``roadmap.agent.llm._get_llm`` so no network
access is needed.
"""

from __future__ import annotations

import json
import sqlite3
from types import SimpleNamespace
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest

from roadmap.agent.actions import (
    ActionProposal,
    NodeSpec,
    breakdown_proposal,
    chat_only,
    coerce_proposal,
)
from roadmap.agent import executor
from roadmap.agent.executor import create_node_tree, execute_action, refine_node
from roadmap.db.connection import get_connection
from roadmap.db.migrations import init_db
from roadmap.db.models import NodeStatus, NodeType, Position
from roadmap.db.nodes import get_node, list_nodes
from roadmap.db.projects import create_project, get_project
from roadmap.errors import MalformedInputError, NotFoundError, UpstreamUnavailableError
from roadmap.tree import operations
from roadmap.tree.cascade import plan_cascade


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fake_llm(reply: str) -> MagicMock:
    llm = MagicMock()
    llm.invoke.return_value = SimpleNamespace(content=reply)
    return llm


def _proposal(action_type: str, params: dict, message: str = "ok") -> ActionProposal:
    data = {"action": {"type": action_type, "params": params}, "message": message}
    proposal = coerce_proposal(data, json.dumps(data))
    assert not proposal.is_chat, "fixture proposal did not validate"
    return proposal


def _bulk_spec() -> list[dict]:
    return [
        {
            "title": f"Phase {p}",
            "type": "phase",
            "children": [{"title": f"Step {p}.{s}", "type": "step"} for s in (1, 2)],
        }
        for p in (1, 2)
    ]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    c = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(c)
    yield c
    c.close()


@pytest.fixture()
def project_id(conn) -> str:
    return create_project(conn, "Thesis", jurusan="Informatics").id


# ---------------------------------------------------------------------------
# create_node / create_multiple_nodes
# ---------------------------------------------------------------------------

class TestCreateActions:
    def test_single_node_under_parent(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        result = execute_action(
            conn,
            project_id,
            _proposal("create_node", {"title": "S", "type": "step", "parent_id": phase.id}),
        )
        (node,) = result.created_nodes
        assert node.parent_id == phase.id
        assert node.metadata.extra["generatedBy"] == "ai"
        assert result.to_dict()["success"] is True

    def test_single_node_bad_parent_type(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        proposal = _proposal(
            "create_node", {"title": "T", "type": "substep", "parent_id": phase.id}
        )
        with pytest.raises(MalformedInputError):
            execute_action(conn, project_id, proposal)

    def test_bulk_two_phases_two_steps(self, conn, project_id):
        result = execute_action(
            conn, project_id, _proposal("create_multiple_nodes", {"nodes": _bulk_spec()})
        )
        created = result.created_nodes
        assert len(created) == 6
        assert result.failed == 0

        indices = [n.order_index for n in created]
        assert indices == sorted(indices)
        assert len(set(indices)) == 6

        phases = [n for n in created if n.type is NodeType.PHASE]
        assert [p.position.x for p in phases] == [100, 1300]
        assert [p.metadata.phase_index for p in phases] == [0, 1]
        for step in (n for n in created if n.type is NodeType.STEP):
            assert step.parent_id in {p.id for p in phases}

    def test_bulk_follows_existing_phases(self, conn, project_id):
        operations.create_node(conn, project_id, "phase", "Existing")
        result = execute_action(
            conn,
            project_id,
            _proposal("create_multiple_nodes", {"nodes": [{"title": "New", "type": "phase"}]}),
        )
        assert result.created_nodes[0].metadata.phase_index == 1

    def test_bulk_skips_subtree_of_mistyped_child(self, conn, project_id):
        specs = [
            {
                "title": "Phase",
                "type": "phase",
                "children": [
                    {"title": "Sub", "type": "substep", "children": [
                        {"title": "Deeper", "type": "substep"},
                    ]},
                    {"title": "Step", "type": "step"},
                ],
            }
        ]
        result = execute_action(
            conn, project_id, _proposal("create_multiple_nodes", {"nodes": specs})
        )
        assert [n.title for n in result.created_nodes] == ["Phase", "Step"]
        assert result.failed == 2

    def test_bulk_db_failure_is_per_node(self, conn, project_id, monkeypatch):
        real_create = executor.node_store.create_node

        def flaky_create(c, pid, title, *args, **kwargs):
            if title == "Broken":
                raise sqlite3.IntegrityError("boom")
            return real_create(c, pid, title, *args, **kwargs)

        monkeypatch.setattr(executor.node_store, "create_node", flaky_create)
        specs = [
            NodeSpec(title="Broken", type="phase", children=[NodeSpec(title="S", type="step")]),
            NodeSpec(title="Fine", type="phase"),
        ]
        created, failed = create_node_tree(conn, project_id, specs)
        assert [n.title for n in created] == ["Fine"]
        assert failed == 2

    def test_creation_refreshes_project(self, conn, project_id):
        execute_action(
            conn, project_id, _proposal("create_multiple_nodes", {"nodes": _bulk_spec()})
        )
        meta = get_project(conn, project_id).metadata
        assert meta.total_steps == 6
        assert meta.current_phase == "Phase 1"


# ---------------------------------------------------------------------------
# update_node
# ---------------------------------------------------------------------------

class TestUpdateAction:
    def test_status_update_cascades_to_ancestors(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        step = operations.create_node(conn, project_id, "step", "S", parent_id=phase.id)

        result = execute_action(
            conn,
            project_id,
            _proposal("update_node", {"node_id": step.id, "updates": {"status": "completed"}}),
        )
        assert result.updated_nodes[0].status is NodeStatus.COMPLETED
        assert get_node(conn, phase.id).status is NodeStatus.COMPLETED
        assert get_project(conn, project_id).metadata.progress_percentage == 100

    def test_status_on_parent_is_rederived_from_children(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        step = operations.create_node(conn, project_id, "step", "S", parent_id=phase.id)
        operations.create_node(conn, project_id, "substep", "T1", parent_id=step.id)
        operations.create_node(conn, project_id, "substep", "T2", parent_id=step.id)

        result = execute_action(
            conn,
            project_id,
            _proposal("update_node", {"node_id": step.id, "updates": {"status": "completed"}}),
        )

        assert result.updated_nodes[0].status is NodeStatus.PENDING
        assert get_node(conn, phase.id).status is NodeStatus.PENDING
        assert get_node(conn, phase.id).metadata.progress == 0
        assert plan_cascade(list_nodes(conn, project_id)).is_empty()

    def test_estimated_time_goes_to_metadata(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        execute_action(
            conn,
            project_id,
            _proposal("update_node", {"node_id": phase.id, "updates": {"estimated_time": "3 weeks"}}),
        )
        assert get_node(conn, phase.id).metadata.estimated_time == "3 weeks"

    def test_node_from_other_project_rejected(self, conn, project_id):
        other = create_project(conn, "Other").id
        foreign = operations.create_node(conn, other, "phase", "F")
        proposal = _proposal("update_node", {"node_id": foreign.id, "updates": {"title": "x"}})
        with pytest.raises(NotFoundError):
            execute_action(conn, project_id, proposal)
        assert get_node(conn, foreign.id).title == "F"

    def test_empty_update_changes_nothing(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        result = execute_action(
            conn, project_id, _proposal("update_node", {"node_id": phase.id, "updates": {}})
        )
        assert result.updated_nodes == []


# ---------------------------------------------------------------------------
# break_down_task
# ---------------------------------------------------------------------------

class TestBreakdown:
    REPLY = json.dumps(
        {
            "subtasks": [
                {"title": "Collect data", "description": "d1", "estimatedTime": "2 days",
                 "priority": "HIGH", "deliverable": "dataset"},
                {"title": "Clean data", "priority": "whenever"},
                {"title": "Describe data"},
                {"description": "no title, dropped"},
            ]
        }
    )

    def test_step_breaks_into_substeps(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        step = operations.create_node(
            conn, project_id, "step", "Data", parent_id=phase.id, position=Position(100, 400)
        )

        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm(self.REPLY)):
            result = execute_action(conn, project_id, breakdown_proposal(step.id))

        children = result.created_nodes
        assert [c.title for c in children] == ["Collect data", "Clean data", "Describe data"]
        assert all(c.type is NodeType.SUBSTEP and c.parent_id == step.id for c in children)
        assert [c.position for c in children] == [
            Position(400, 400),
            Position(400, 500),
            Position(400, 600),
        ]
        assert children[0].priority.value == "high"
        assert children[1].priority.value == "medium"
        assert children[0].metadata.extra["deliverable"] == "dataset"
        indices = [c.order_index for c in children]
        assert indices == list(range(indices[0], indices[0] + 3))

        parent = get_node(conn, step.id)
        assert parent.metadata.extra["brokenDown"] is True
        assert parent.metadata.extra["childCount"] == 3
        assert "brokenDownAt" in parent.metadata.extra

    def test_requested_count_caps_children(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm(self.REPLY)):
            result = execute_action(conn, project_id, breakdown_proposal(phase.id, 2))
        assert len(result.created_nodes) == 2
        assert all(c.type is NodeType.STEP for c in result.created_nodes)

    def test_substep_cannot_be_broken_down(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        step = operations.create_node(conn, project_id, "step", "S", parent_id=phase.id)
        sub = operations.create_node(conn, project_id, "substep", "T", parent_id=step.id)
        with pytest.raises(MalformedInputError):
            execute_action(conn, project_id, breakdown_proposal(sub.id))

    def test_reply_without_subtasks(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm('{"ideas": []}')):
            with pytest.raises(MalformedInputError):
                execute_action(conn, project_id, breakdown_proposal(phase.id))
        assert len(list_nodes(conn, project_id)) == 1

    def test_upstream_overload(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        llm = MagicMock()
        llm.invoke.side_effect = RuntimeError("503 model overloaded")
        with patch("roadmap.agent.llm._get_llm", return_value=llm):
            with pytest.raises(UpstreamUnavailableError) as excinfo:
                execute_action(conn, project_id, breakdown_proposal(phase.id))
        assert excinfo.value.kind == "overloaded"


# ---------------------------------------------------------------------------
# Refine
# ---------------------------------------------------------------------------

class TestRefine:
    REPLY = json.dumps(
        {
            "description": "Survey 30 recent papers on graph neural networks.",
            "checkpoints": ["Pick databases", "Screen abstracts", "", "Write summary"],
            "resources": [
                {"type": "tool", "title": "Zotero", "description": "Reference manager"},
                "not a resource",
            ],
            "estimatedTime": "2 weeks",
            "tips": ["Track search strings"],
        }
    )

    def test_description_and_metadata_merged(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P")
        step = operations.create_node(
            conn,
            project_id,
            "step",
            "Literature",
            parent_id=phase.id,
            status="in_progress",
            estimated_time="1 week",
            metadata={"notes": "keep me"},
        )

        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm(self.REPLY)):
            result = refine_node(conn, project_id, step.id)

        stored = get_node(conn, step.id)
        assert stored.description.startswith("Survey 30")
        meta = stored.metadata
        assert meta.extra["checkpoints"] == ["Pick databases", "Screen abstracts", "Write summary"]
        assert meta.resources == [
            {"type": "tool", "title": "Zotero", "description": "Reference manager"}
        ]
        assert meta.extra["tips"] == ["Track search strings"]
        assert meta.estimated_time == "2 weeks"
        assert meta.extra["refined"] is True
        assert "refinedAt" in meta.extra
        assert meta.extra["notes"] == "keep me"
        assert stored.status is NodeStatus.IN_PROGRESS
        assert stored.position == step.position

        payload = result.to_dict()
        assert payload["success"] is True
        assert payload["node"]["id"] == step.id
        assert payload["improvements"]["checkpoints"] == meta.extra["checkpoints"]

    def test_missing_estimate_keeps_previous(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P", estimated_time="3 weeks")
        reply = json.dumps({"description": "Sharper"})
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm(reply)):
            result = refine_node(conn, project_id, phase.id)
        assert result.node.metadata.estimated_time == "3 weeks"
        assert result.node.metadata.extra["checkpoints"] == []
        assert result.node.metadata.phase_index == 0

    def test_reply_without_description(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "P", description="old")
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm('{"tips": ["x"]}')):
            with pytest.raises(MalformedInputError):
                refine_node(conn, project_id, phase.id)
        stored = get_node(conn, phase.id)
        assert stored.description == "old"
        assert "refined" not in stored.metadata.extra

    def test_node_from_other_project_rejected(self, conn, project_id):
        other = create_project(conn, "Other").id
        foreign = operations.create_node(conn, other, "phase", "F")
        with pytest.raises(NotFoundError):
            refine_node(conn, project_id, foreign.id)


# ---------------------------------------------------------------------------
# chat_only
# ---------------------------------------------------------------------------

class TestChatOnly:
    def test_no_mutation(self, conn, project_id):
        operations.create_node(conn, project_id, "phase", "P")
        before = [n.to_dict() for n in list_nodes(conn, project_id)]

        result = execute_action(conn, project_id, chat_only("Keep going!"))

        assert result.action == "chat_only"
        assert result.message == "Keep going!"
        assert result.created_nodes == []
        assert [n.to_dict() for n in list_nodes(conn, project_id)] == before

    def test_missing_project(self, conn):
        with pytest.raises(NotFoundError):
            execute_action(conn, "missing", chat_only("hi"))
