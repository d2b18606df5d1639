"""Tests for orchestrator identity formatting."""

from atreides.config import IdentityConfig
from atreides.orchestrator.identity import (
    format_delegation_announcement,
    format_header,
    get_agent_display_name,
)


class TestHeader:
    """Tests for the system prompt header."""

    def test_header_uses_persona(self):
        """The header names the persona and the required prefix."""
        header = format_header(IdentityConfig(persona_name="Stilgar"))
        assert header.startswith("# Atreides Orchestration Profile")
        assert "You are **Stilgar**" in header
        assert "START EVERY RESPONSE WITH: [Stilgar]:" in header

    def test_header_disabled(self):
        """No header without the response prefix."""
        assert format_header(IdentityConfig(response_prefix=False)) == ""


class TestDelegation:
    """Tests for agent display names and announcements."""

    def test_display_name_lookup_order(self):
        """Config overrides win over the built-in table."""
        identity = IdentityConfig(agent_display_names={"explore": "Scout"})
        assert get_agent_display_name(identity, "explore") == "Scout"
        assert get_agent_display_name(IdentityConfig(), "explore") == "Explore"
        assert get_agent_display_name(IdentityConfig(), "devops-architect") == "DevOps Architect"

    def test_display_name_fallback(self):
        """Unknown kebab-case ids become Title Case."""
        assert get_agent_display_name(IdentityConfig(), "data-pipeline-expert") == "Data Pipeline Expert"

    def test_announcements(self):
        """Before and after announcements use the display name."""
        identity = IdentityConfig()
        assert format_delegation_announcement(identity, "explore") == "[Muad'Dib]: Delegating to Explore agent..."
        assert (
            format_delegation_announcement(identity, "explore", before=False)
            == "[Muad'Dib]: Explore agent has completed the task."
        )

    def test_announcements_disabled(self):
        """Disabled announcements are empty."""
        assert format_delegation_announcement(IdentityConfig(delegation_announcements=False), "plan") == ""
