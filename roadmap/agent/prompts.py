"""Prompt templates for the roadmap agent."""

from __future__ import annotations

from typing import Optional

from roadmap.db.models import Node, NodeType, Project
from roadmap.tree.layout import ordered_phases

AGENT_SYSTEM_PROMPT = """You are an intelligent AI agent for thesis planning. You can:

1. Chat & Advise - Answer questions, give advice
2. Create Single Node - Add one phase, step, or substep
3. Create Multiple Nodes - Generate phases with their steps at once
4. Update Nodes - Modify existing nodes
5. Break Down - Split an existing task into subtasks

When the user asks you to DO something (create, add, update, break down), respond with JSON:
{
  "action": {
    "type": "create_node" | "create_multiple_nodes" | "update_node" | "break_down_task" | "chat_only",
    "params": { /* action-specific params */ },
    "reasoning": "Why I'm doing this"
  },
  "message": "User-friendly explanation"
}

Params per action type:
- create_node: {"title", "description", "type": "phase|step|substep", "parent_id"?, "priority"?, "estimated_time"?}
- create_multiple_nodes: {"nodes": [{"title", "description", "type", "priority"?, "estimated_time"?, "children"?: [...]}]}
- update_node: {"node_id", "updates": {"title"?, "description"?, "priority"?, "estimated_time"?, "status"?}}
- break_down_task: {"node_id", "num_substeps"?}
- chat_only: {}

A step's parent must be a phase and a substep's parent must be a step.
Use the node ids from the project outline below; never invent ids.

Guidelines:
- Be concise (2-4 sentences)
- Always explain WHY
- Use action types when the user wants you to DO something
- Use chat_only for questions, analysis, advice
- DO NOT use markdown formatting in your message"""


BREAKDOWN_PROMPT = """You are a task breakdown expert. Break complex tasks into smaller, manageable subtasks.

Each subtask should be:
- Specific and actionable
- Completable in 1-3 days
- Have a clear deliverable
- Logically sequenced

Return JSON format:
{
  "subtasks": [
    {
      "title": "Subtask name",
      "description": "What to do",
      "estimatedTime": "1 day",
      "priority": "medium",
      "deliverable": "What you'll produce"
    }
  ]
}"""


PLANNER_PROMPT = """You are an expert thesis advisor specializing in creating comprehensive academic roadmaps for university students.

Create a detailed, actionable thesis roadmap with realistic timelines and clear dependencies.

Consider:
- The student's field of study (jurusan)
- Timeline constraints
- Practical, actionable steps
- Clear milestones and checkpoints

Structure your response as JSON with this format:
{
  "phases": [
    {
      "title": "Phase name",
      "description": "What this phase entails",
      "estimatedTime": "2-3 weeks",
      "steps": [
        {
          "title": "Specific task",
          "description": "Detailed description",
          "estimatedTime": "3 days",
          "priority": "high",
          "substeps": ["Substep 1", "Substep 2"]
        }
      ]
    }
  ]
}

Create 5-8 phases covering: Preparation, Literature Review, Methodology, Implementation/Research, Analysis, Writing, and Finalization."""


REFINER_PROMPT = """You are a detail-oriented academic advisor who improves thesis step descriptions.

Given a step, enhance it by:
1. Making the description more specific and actionable
2. Adding concrete checkpoints (3-5 items)
3. Suggesting relevant resources (papers, tools, tutorials)
4. Refining the time estimate if needed
5. Adding practical tips

Return JSON format:
{
  "description": "Enhanced description",
  "checkpoints": ["Checkpoint 1", "Checkpoint 2"],
  "resources": [
    {
      "type": "paper|tutorial|tool",
      "title": "Resource name",
      "description": "Why it's useful"
    }
  ],
  "estimatedTime": "refined estimate",
  "tips": ["Tip 1", "Tip 2"]
}"""


_STATUS_MARK = {
    "pending": " ",
    "in_progress": "~",
    "completed": "x",
    "blocked": "!",
}


def _line(node: Node, indent: int) -> str:
    return (
        f"{'  ' * indent}- [{_STATUS_MARK[node.status.value]}] "
        f"{node.type.value} {node.title!r} (id={node.id})"
    )


def build_outline(project: Project, nodes: list[Node]) -> str:
    """Compact text outline of a project, phase by phase.

    Nodes that are not reachable from a phase are listed at the end.
    """
    lines = [
        f"Project: {project.title} ({project.jurusan or 'unknown field'})",
        f"Timeline: {project.timeline or 'unspecified'}",
    ]
    progress = project.metadata.progress_percentage
    if progress is not None:
        lines.append(f"Progress: {progress}% (current phase: {project.metadata.current_phase})")

    listed: set[str] = set()

    def walk(node: Node, depth: int) -> None:
        lines.append(_line(node, depth))
        listed.add(node.id)
        for child in nodes:
            if child.parent_id == node.id and child.id not in listed:
                walk(child, depth + 1)

    for phase in ordered_phases(nodes):
        walk(phase, 0)
    rest = [n for n in nodes if n.id not in listed and n.type is not NodeType.PHASE]
    if rest:
        lines.append("Unassigned:")
        lines.extend(_line(n, 1) for n in rest)
    return "\n".join(lines)


def build_chat_prompt(project: Project, nodes: list[Node], message: str) -> str:
    return (
        f"{AGENT_SYSTEM_PROMPT}\n\n"
        f"Project outline:\n{build_outline(project, nodes)}\n\n"
        f"User: {message}\n"
        "Response:"
    )


def build_breakdown_prompt(project: Project, node: Node, count: Optional[int], low: int, high: int) -> str:
    wanted = f"exactly {count}" if count else f"{low}-{high}"
    return (
        f"{BREAKDOWN_PROMPT}\n\n"
        f"Project: {project.title} ({project.jurusan})\n\n"
        "Task to Break Down:\n"
        f"- Title: {node.title}\n"
        f"- Description: {node.description or 'No description'}\n"
        f"- Type: {node.type.value}\n"
        f"- Estimated Time: {node.metadata.estimated_time or 'Unknown'}\n\n"
        f"Create {wanted} specific subtasks that cover all aspects of this task."
    )


def build_roadmap_prompt(project: Project, additional_context: str = "") -> str:
    parts = [
        PLANNER_PROMPT,
        "",
        "Create a comprehensive thesis roadmap for:",
        f"Title: {project.title}",
        f"Jurusan: {project.jurusan}",
        f"Timeline: {project.timeline}",
    ]
    if project.description:
        parts.append(f"Description: {project.description}")
    if additional_context:
        parts.append(f"Additional Context: {additional_context}")
    parts += [
        "",
        "Generate 3-5 steps per phase with actionable substeps, realistic time",
        "estimates and priority levels.",
        "Return ONLY valid JSON matching the specified format.",
    ]
    return "\n".join(parts)


def build_refine_prompt(project: Project, node: Node) -> str:
    return (
        f"{REFINER_PROMPT}\n\n"
        "Project Context:\n"
        f"- Title: {project.title}\n"
        f"- Jurusan: {project.jurusan}\n\n"
        "Current Step:\n"
        f"- Title: {node.title}\n"
        f"- Description: {node.description or 'No description'}\n"
        f"- Type: {node.type.value}\n"
        f"- Priority: {node.priority.value}\n\n"
        "Enhance this step with detailed, actionable improvements."
    )
