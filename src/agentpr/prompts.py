"""System instructions and prompt templates for the stage agents."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from jinja2 import StrictUndefined, Template, UndefinedError

logger = logging.getLogger(__name__)

# Characters of the plan shown to the branch namer
PLAN_PREVIEW_CHARS = 500


FILE_CHANGES_FORMAT = """Respond with ONLY a valid JSON object in this exact format:
{
  "files": [
    {
      "path": "relative/path/to/file",
      "content": "full file content here",
      "action": "create|update|delete"
    }
  ],
  "summary": "Short description of the changes"
}

Rules:
- Use "create" for new files and "update" for existing ones
- Provide the FULL file content, never a diff
- Use "delete" to remove a file (content can be null)
- Paths are relative to the repository root
- Follow the existing code style
- Do NOT include any text outside the JSON object"""


SYSTEM_INSTRUCTIONS = {
    "planner": """You are a senior software engineer who breaks coding tasks down into clear, actionable steps.

Your role is to:
1. Analyze the given task thoroughly
2. Break it down into logical, sequential steps
3. Consider technical dependencies and requirements
4. Provide clear, implementable actions

Return a structured plan with numbered steps. Be specific about what needs to be done in each step.""",

    "branch_namer": """You create concise, descriptive Git branch names.

Branch naming conventions:
- Use lowercase letters, digits and hyphens
- Be descriptive but concise (max 50 characters)
- Start with a category prefix: feature/, fix/, refactor/, docs/
- Avoid special characters except hyphens

Examples:
- feature/add-user-authentication
- fix/resolve-payment-bug
- refactor/optimize-database-queries
- docs/update-api-documentation

Return ONLY the branch name, nothing else.""",

    "analyzer": """You are a software architect reading an unfamiliar codebase.

Summarize what matters for the task at hand: the project's purpose, its
layout, the languages and frameworks in use, the files most likely to change,
and the conventions new code must follow. Be concise and concrete. Refer to
real file paths.""",

    "implementer": "You are an expert software engineer implementing changes to a codebase.\n\n"
    + FILE_CHANGES_FORMAT,

    "improver": "You are an expert software engineer applying code review feedback to a codebase.\n\n"
    + FILE_CHANGES_FORMAT,

    "reviewer": """You are a meticulous senior engineer reviewing a change before it is committed.

Check the change for bugs, missing pieces of the task, and style problems.
Only ask for improvements that matter.

Respond with ONLY a valid JSON object in this exact format:
{
  "has_improvements": true,
  "improvements": ["Concrete improvement 1", "Concrete improvement 2"],
  "summary": "One paragraph review summary"
}

Set "has_improvements" to false and leave "improvements" empty when the change is ready.""",

    "pr_writer": """You write clear, professional pull request descriptions.

Respond with ONLY a valid JSON object in this exact format:
{
  "title": "Short imperative title (max 72 characters)",
  "body": "Markdown body: summary, list of changes, testing notes"
}""",
}


TEMPLATES = {
    "planner": """Task: {{ task }}

Create a detailed implementation plan for this task. Break it down into clear, sequential steps that a developer can follow. Consider:
- What files might need to be created or modified
- What dependencies or libraries might be needed
- The logical order of implementation
- Any potential challenges or considerations

Provide a numbered list of specific steps to complete this task.""",

    "branch_namer": """Task: {{ task }}

Plan Summary: {{ plan_preview }}...

Generate a concise, descriptive Git branch name for this task.

Branch name:""",

    "analyzer": """## Task
{{ task }}

## Repository Digest
{{ digest }}

Summarize the codebase context a developer needs to implement the task.""",

    "implementer": """## Task to Implement
{{ task }}

## Implementation Plan
{{ plan }}

## Codebase Context
{{ context }}
{% if files %}
## Relevant Files
{{ files }}
{% endif %}
Generate the file changes that implement the task.""",

    "improver": """## Review Feedback
{{ improvements }}
{% if files %}
## Current Files
{{ files }}
{% endif %}
Apply the review feedback. Only change what the feedback asks for.""",

    "reviewer": """## Task
{{ task }}

## Change Summary
{{ summary }}

## Changed Files
{{ files }}

Review the change.""",

    "pr_writer": """## Task
{{ task }}

## Implementation Plan
{{ plan }}

## Changes
{{ changes }}

## Review
{{ review }}

Write the pull request title and body.""",
}


# Canned responses used by the mock generation client
MOCK_RESPONSES = {
    "planner": "1. Inspect the existing code\n2. Add the requested change\n3. Document it",
    "branch_namer": "feature/mock-change",
    "analyzer": "A small project. Changes belong at the repository root.",
    "implementer": json.dumps({
        "files": [
            {
                "path": "MOCK_CHANGE.md",
                "content": "# Mock change\n\nCreated by a mock run.\n",
                "action": "create",
            }
        ],
        "summary": "Add MOCK_CHANGE.md",
    }),
    "improver": json.dumps({
        "files": [
            {
                "path": "MOCK_CHANGE.md",
                "content": "# Mock change\n\nCreated by a mock run and revised after review.\n",
                "action": "update",
            }
        ],
        "summary": "Apply review feedback",
    }),
    "reviewer": json.dumps({
        "has_improvements": False,
        "improvements": [],
        "summary": "The change is ready.",
    }),
    "pr_writer": json.dumps({
        "title": "Add mock change",
        "body": "## Summary\n\nAdds MOCK_CHANGE.md.",
    }),
}


def render(role: str, **variables: Any) -> str:
    """Render the prompt template for a role.

    Raises:
        KeyError: If the role has no template.
        UndefinedError: If a template variable is missing.
    """
    try:
        return Template(TEMPLATES[role], undefined=StrictUndefined).render(**variables)
    except UndefinedError as e:
        logger.error(f"Template variable missing for role '{role}': {e}")
        raise


def system_for(role: str) -> str:
    return SYSTEM_INSTRUCTIONS[role]


def role_for_system(system: str) -> Optional[str]:
    """Find which role a system instruction belongs to."""
    for role, text in SYSTEM_INSTRUCTIONS.items():
        if text == system:
            return role
    return None
