"""Incident store interface and an in-memory implementation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol, Sequence, runtime_checkable

import structlog

from deployguard.remediation.contracts import Evidence

logger = structlog.get_logger()


class IncidentStatus(StrEnum):
    OPEN = "OPEN"
    ACKED = "ACKED"
    MITIGATED = "MITIGATED"
    CLOSED = "CLOSED"


@dataclass
class Incident:
    id: str
    incident_key: str
    category: str
    status: IncidentStatus = IncidentStatus.OPEN


@runtime_checkable
class IncidentStore(Protocol):
    async def get_incident(self, incident_id: str) -> Incident | None: ...

    async def update_status(self, incident_id: str, status: IncidentStatus) -> None: ...

    async def get_evidence(self, incident_id: str) -> list[Evidence]: ...

    async def add_evidence(self, incident_id: str, evidence: Sequence[Evidence]) -> None: ...


@dataclass
class InMemoryIncidentStore:
    incidents: dict[str, Incident] = field(default_factory=dict)
    evidence: dict[str, list[Evidence]] = field(default_factory=dict)

    def add_incident(self, incident: Incident, evidence: Sequence[Evidence] = ()) -> None:
        self.incidents[incident.id] = incident
        self.evidence.setdefault(incident.id, []).extend(evidence)

    async def get_incident(self, incident_id: str) -> Incident | None:
        return self.incidents.get(incident_id)

    async def update_status(self, incident_id: str, status: IncidentStatus) -> None:
        incident = self.incidents.get(incident_id)
        if incident is None:
            raise KeyError(f"Incident not found: {incident_id}")
        logger.info(
            "incident_status_updated",
            incident_id=incident_id,
            previous=str(incident.status),
            status=str(status),
        )
        incident.status = IncidentStatus(status)

    async def get_evidence(self, incident_id: str) -> list[Evidence]:
        return list(self.evidence.get(incident_id, []))

    async def add_evidence(self, incident_id: str, evidence: Sequence[Evidence]) -> None:
        self.evidence.setdefault(incident_id, []).extend(evidence)
