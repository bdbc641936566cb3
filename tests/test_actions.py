"""Tests for parsing model replies into action proposals."""

from __future__ import annotations

import json

import pytest

from roadmap.agent.actions import (
    ActionProposal,
    BreakDownTaskAction,
    CreateMultipleNodesAction,
    CreateNodeAction,
    UpdateNodeAction,
    breakdown_proposal,
    chat_only,
    coerce_proposal,
    parse_action_response,
)
from roadmap.db.models import NodeStatus, NodeType, Priority


def _envelope(action_type: str, params: dict, message: str = "Done.") -> dict:
    return {
        "action": {"type": action_type, "params": params, "reasoning": "Because."},
        "message": message,
    }


class TestParseActionResponse:
    def test_fenced_json(self):
        body = json.dumps(_envelope("create_node", {"title": "Intro", "type": "phase"}))
        text = f"Sure, here you go:\n```json\n{body}\n```\nAnything else?"
        proposal = parse_action_response(text)

        assert isinstance(proposal.action, CreateNodeAction)
        assert proposal.action.params.type is NodeType.PHASE
        assert proposal.message == "Done."

    def test_bare_json(self):
        text = json.dumps(
            _envelope("update_node", {"node_id": "n1", "updates": {"status": "completed"}})
        )
        proposal = parse_action_response(text)

        assert isinstance(proposal.action, UpdateNodeAction)
        assert proposal.action.params.updates.status is NodeStatus.COMPLETED

    def test_no_json_is_chat(self):
        proposal = parse_action_response("Focus on your literature review first.")
        assert proposal.is_chat
        assert proposal.message == "Focus on your literature review first."

    def test_invalid_json_is_chat(self):
        text = '```json\n{"action": {"type": "create_node",}\n```'
        proposal = parse_action_response(text)
        assert proposal.is_chat
        assert proposal.message == text

    def test_unknown_action_type_is_chat(self):
        text = json.dumps(_envelope("delete_everything", {}))
        proposal = parse_action_response(text)
        assert proposal.is_chat
        assert proposal.message == text

    def test_missing_required_param_is_chat(self):
        text = json.dumps(_envelope("create_node", {"type": "step"}))
        assert parse_action_response(text).is_chat

    def test_advisory_action_keeps_message(self):
        text = json.dumps(_envelope("analyze_progress", {}, message="You are 40% done."))
        proposal = parse_action_response(text)
        assert proposal.is_chat
        assert proposal.message == "You are 40% done."

    def test_enum_values_are_case_insensitive(self):
        text = json.dumps(
            _envelope("create_node", {"title": "S", "type": "Step", "priority": "HIGH"})
        )
        proposal = parse_action_response(text)
        assert proposal.action.params.type is NodeType.STEP
        assert proposal.action.params.priority is Priority.HIGH

    def test_nested_bulk_specs(self):
        params = {
            "nodes": [
                {
                    "title": "Phase",
                    "type": "phase",
                    "children": [
                        {"title": "Step", "type": "step", "children": [
                            {"title": "Sub", "type": "substep"},
                        ]},
                    ],
                }
            ]
        }
        proposal = parse_action_response(json.dumps(_envelope("create_multiple_nodes", params)))
        assert isinstance(proposal.action, CreateMultipleNodesAction)
        assert proposal.action.params.nodes[0].count() == 3

    def test_empty_bulk_list_is_chat(self):
        text = json.dumps(_envelope("create_multiple_nodes", {"nodes": []}))
        assert parse_action_response(text).is_chat

    def test_message_falls_back_to_reasoning(self):
        data = _envelope("break_down_task", {"node_id": "n1"}, message="")
        proposal = coerce_proposal(data, "raw")
        assert isinstance(proposal.action, BreakDownTaskAction)
        assert proposal.message == "Because."


class TestCoerceProposal:
    @pytest.mark.parametrize("data", [None, [], {"message": "hi"}, {"action": "create"}])
    def test_not_a_proposal(self, data):
        proposal = coerce_proposal(data, "raw text")
        assert proposal.is_chat
        assert proposal.message == "raw text"

    def test_out_of_range_breakdown_count(self):
        data = _envelope("break_down_task", {"node_id": "n1", "num_substeps": 50})
        assert coerce_proposal(data, "raw").is_chat


class TestHelpers:
    def test_chat_only(self):
        proposal = chat_only("hello")
        assert proposal.is_chat
        assert proposal.model_dump(mode="json")["action"]["type"] == "chat_only"

    def test_breakdown_proposal_round_trips(self):
        proposal = breakdown_proposal("n1", 4)
        again = ActionProposal.model_validate(proposal.model_dump(mode="json"))
        assert isinstance(again.action, BreakDownTaskAction)
        assert again.action.params.num_substeps == 4
