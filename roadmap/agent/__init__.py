"""Roadmap agent package.

Public API::

    from roadmap.agent import run_agent_turn
    payload = run_agent_turn(conn, project_id, "Add a literature review step")
"""

from roadmap.agent.runner import run_agent_turn

__all__ = ["run_agent_turn"]
