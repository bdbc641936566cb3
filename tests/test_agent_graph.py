"""Tests for the agent-turn graph and its runner (chat model mocked)."""

from __future__ import annotations

import json
import sqlite3
from types import SimpleNamespace
from typing import Generator
from unittest.mock import MagicMock, patch

import httpx
import pytest

from roadmap.agent import run_agent_turn
from roadmap.agent.actions import chat_only
from roadmap.agent.graph import _prompt_nodes, _route_proposal, build_graph
from roadmap.db.connection import get_connection
from roadmap.db.migrations import init_db
from roadmap.db.nodes import list_nodes
from roadmap.db.projects import create_project
from roadmap.errors import MalformedInputError, NotFoundError, UpstreamUnavailableError
from roadmap.tree import operations


def _fake_ai_message(content: str) -> SimpleNamespace:
    return SimpleNamespace(content=content)


def _fake_llm(content: str) -> MagicMock:
    llm = MagicMock()
    llm.invoke.return_value = _fake_ai_message(content)
    return llm


@pytest.fixture()
def conn() -> Generator[sqlite3.Connection, None, None]:
    c = get_connection(db_path=":memory:")  # type: ignore[arg-type]
    init_db(c)
    yield c
    c.close()


@pytest.fixture()
def project_id(conn) -> str:
    return create_project(conn, "Thesis", jurusan="Physics").id


class TestGraphShape:
    def test_nodes(self, conn):
        nodes = set(build_graph(conn).get_graph().nodes)
        assert {"propose", "execute"} <= nodes

    def test_route_chat_only_ends(self):
        state = {"proposal": chat_only("hi").model_dump(mode="json")}
        assert _route_proposal(state) != "execute"

    def test_route_action_executes(self):
        state = {"proposal": {"action": {"type": "create_node"}}}
        assert _route_proposal(state) == "execute"


class TestRunAgentTurn:
    def test_chat_only_turn(self, conn, project_id):
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm("Start with a literature review.")):
            payload = run_agent_turn(conn, project_id, "What should I do first?")

        assert payload["action"] == "chat_only"
        assert payload["message"] == "Start with a literature review."
        assert payload["created_nodes"] == []
        assert list_nodes(conn, project_id) == []

    def test_action_turn_creates_node(self, conn, project_id):
        reply = json.dumps(
            {
                "action": {
                    "type": "create_node",
                    "params": {"title": "Experiments", "type": "phase"},
                    "reasoning": "You need an experimental phase.",
                },
                "message": "Added an Experiments phase.",
            }
        )
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm(f"```json\n{reply}\n```")):
            payload = run_agent_turn(conn, project_id, "Add an experiments phase")

        assert payload["success"] is True
        assert payload["action"] == "create_node"
        assert payload["message"] == "Added an Experiments phase."
        assert [n["title"] for n in payload["created_nodes"]] == ["Experiments"]
        assert [n.title for n in list_nodes(conn, project_id)] == ["Experiments"]

    def test_prompt_contains_outline(self, conn, project_id):
        phase = operations.create_node(conn, project_id, "phase", "Measurements")
        fake = _fake_llm("ok")
        with patch("roadmap.agent.llm._get_llm", return_value=fake):
            run_agent_turn(conn, project_id, "How am I doing?")

        prompt = fake.invoke.call_args.args[0]
        assert phase.id in prompt
        assert "Measurements" in prompt
        assert "User: How am I doing?" in prompt

    def test_invalid_reply_degrades_to_chat(self, conn, project_id):
        reply = '{"action": {"type": "create_node", "params": {}}}'
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm(reply)):
            payload = run_agent_turn(conn, project_id, "Add something")
        assert payload["action"] == "chat_only"
        assert payload["message"] == reply

    @pytest.mark.parametrize("message", ["", "   "])
    def test_blank_message(self, conn, project_id, message):
        with pytest.raises(MalformedInputError):
            run_agent_turn(conn, project_id, message)

    def test_missing_project(self, conn):
        with patch("roadmap.agent.llm._get_llm", return_value=_fake_llm("hi")):
            with pytest.raises(NotFoundError):
                run_agent_turn(conn, "missing", "hello")

    def test_upstream_error_propagates(self, conn, project_id):
        fake = MagicMock()
        fake.invoke.side_effect = RuntimeError("429 Too Many Requests")
        with patch("roadmap.agent.llm._get_llm", return_value=fake):
            with pytest.raises(UpstreamUnavailableError):
                run_agent_turn(conn, project_id, "hello")


class TestPromptNodes:
    def test_under_limit_untouched(self, conn, project_id):
        operations.create_node(conn, project_id, "phase", "P")
        nodes = list_nodes(conn, project_id)
        assert _prompt_nodes("q", nodes) == nodes

    def test_retrieval_failure_falls_back_to_first(self, conn, project_id, monkeypatch):
        for title in ("A", "B", "C"):
            operations.create_node(conn, project_id, "phase", title)
        nodes = list_nodes(conn, project_id)
        monkeypatch.setattr("roadmap.config.settings.prompt_node_limit", 2)

        def unavailable(*args, **kwargs):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr("roadmap.agent.llm.select_relevant_nodes", unavailable)
        assert [n.title for n in _prompt_nodes("q", nodes)] == ["A", "B"]
