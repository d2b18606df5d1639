"""
Atreides - Orchestrator Identity

Persona header injected into the system prompt and the display names used
in delegation announcements.
"""

from atreides.config import IdentityConfig

AGENT_DISPLAY_NAMES: dict[str, str] = {
    "explore": "Explore",
    "plan": "Plan",
    "general-purpose": "General Purpose",
    "bash": "Bash",
    "technical-writer": "Technical Writer",
    "backend-architect": "Backend Architect",
    "frontend-architect": "Frontend Architect",
    "security-engineer": "Security Engineer",
    "quality-engineer": "Quality Engineer",
    "performance-engineer": "Performance Engineer",
    "devops-architect": "DevOps Architect",
    "system-architect": "System Architect",
    "refactoring-expert": "Refactoring Expert",
    "python-expert": "Python Expert",
    "root-cause-analyst": "Root Cause Analyst",
    "learning-guide": "Learning Guide",
    "socratic-mentor": "Socratic Mentor",
    "requirements-analyst": "Requirements Analyst",
    "validator": "Validator",
    "design-reviewer": "Design Reviewer",
}


def format_header(identity: IdentityConfig) -> str:
    """System prompt header; empty when the response prefix is disabled."""
    if not identity.response_prefix:
        return ""

    name = identity.persona_name
    return f"""# Atreides Orchestration Profile

You are **{name}**, the orchestration agent.

## RULE #1 - ALWAYS PREFIX YOUR RESPONSES

START EVERY RESPONSE WITH: [{name}]:

This is mandatory. No exceptions. Your very first characters of output must be `[{name}]: ` followed by your message.

CORRECT:
[{name}]: I'll analyze this codebase first.
[{name}]: Creating a task list...
[{name}]: Delegating to Explore agent...

WRONG (never do this):
I'll analyze this codebase first.
Let me check that file.
Creating a task list...

If you forget the prefix, stop and restart your response with [{name}]: at the beginning."""


def get_agent_display_name(identity: IdentityConfig, agent_id: str) -> str:
    """
    Human-readable agent name.

    Config overrides win, then the built-in table, then kebab-case is
    turned into Title Case.
    """
    if agent_id in identity.agent_display_names:
        return identity.agent_display_names[agent_id]
    if agent_id in AGENT_DISPLAY_NAMES:
        return AGENT_DISPLAY_NAMES[agent_id]
    return " ".join(word[:1].upper() + word[1:] for word in agent_id.split("-"))


def format_delegation_announcement(identity: IdentityConfig, agent_id: str, before: bool = True) -> str:
    if not identity.delegation_announcements:
        return ""
    display = get_agent_display_name(identity, agent_id)
    if before:
        return f"[{identity.persona_name}]: Delegating to {display} agent..."
    return f"[{identity.persona_name}]: {display} agent has completed the task."
