"""Snapshot returned by the ``/status`` endpoint."""

from __future__ import annotations

from pydantic import Field

from dubswitch.models._base import DubswitchModel


class ProbeCounters(DubswitchModel):
    sent: int = 0
    answered: int = 0
    missed: int = 0
    resets: int = 0
    last_answer_at: float | None = None


class StatusSnapshot(DubswitchModel):
    ok: bool = True
    device: str | None = None
    sessions: int = 0
    pending_queries: int = 0
    routing: list[str | None] = Field(default_factory=list)
    probes: ProbeCounters = Field(default_factory=ProbeCounters)
    broadcast: str = ""
    http_port: int | None = None
