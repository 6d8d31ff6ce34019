"""
Base models and exceptions for the content import system.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class ImportError(Exception):
    """Raised when importing content fails.

    Provides a user-facing message explaining what went wrong
    and, where possible, how to fix it.
    """


class ImportWarning(BaseModel):
    """A non-fatal problem found while importing one piece of content."""

    field: str = Field(description="Feature or field that triggered the warning")
    message: str = Field(description="Human-readable warning message")
    suggestion: str = Field(default="", description="Actionable suggestion to resolve the warning")


class ImportResult(BaseModel):
    """Result of importing one monster."""

    actor: dict[str, Any] = Field(description="Actor creation data, including embedded feature items")
    actor_type: str = Field(description="Actor type: npc, minion or soloMonster")
    source_id: str | None = Field(default=None, description="Monster id on the source platform")
    features_created: int = Field(default=0, description="Number of feature items created")
    actions_parsed: int = Field(default=0, description="Action features carrying effect nodes")
    warnings: list[ImportWarning] = Field(
        default_factory=list,
        description="Non-fatal issues encountered during import",
    )

    @property
    def status(self) -> str:
        return "success_with_warnings" if self.warnings else "success"

    def format(self) -> str:
        """Format the result as a readable text block for an MCP tool response."""
        lines = [
            f"Nimble Nexus Import - {self.actor.get('name', 'Unknown')}",
            f"Status: {self.status.upper().replace('_', ' ')}",
            f"Actor type: {self.actor_type}",
            f"Features: {self.features_created} ({self.actions_parsed} action(s) with parsed effects)",
        ]
        if self.warnings:
            lines.append("")
            lines.append(f"Warnings ({len(self.warnings)}):")
            for w in self.warnings:
                line = f"  - {w.field}: {w.message}"
                if w.suggestion:
                    line += f" ({w.suggestion})"
                lines.append(line)
        return "\n".join(lines)
