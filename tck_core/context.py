"""
Explicit per-scenario context.

A :class:`ScenarioContext` is created by whoever drives a scenario and
passed by reference into gateway and verifier calls.  Nothing in the
harness keeps it in module-level state, so scenarios may run in parallel
workers without interfering with each other.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ScenarioContext:
    """Identity of the running scenario."""
    name: str = ""
    session_id: Optional[str] = None

    def label(self) -> str:
        if self.name and self.session_id:
            return f"{self.name}[{self.session_id}]"
        return self.name or (self.session_id or "-")


def label_of(ctx: ScenarioContext | None) -> str:
    return ctx.label() if ctx is not None else "-"
