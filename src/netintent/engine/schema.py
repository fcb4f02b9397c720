"""Schema definitions for the reconciliation engine.

Defines reconciliation phases, synchronize results and audit reports.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..model import Intent, NetworkState, Topology, TopologyObject


class ReconcilePhase(str, Enum):
    """Where a target currently is in its reconciliation lifecycle."""
    IDLE = "idle"
    VALIDATING = "validating"
    RESOURCE_OBTAINING = "resource_obtaining"
    COMPUTING_PARAMETERS = "computing_parameters"
    SYNCHRONIZING = "synchronizing"
    AUDITED = "audited"
    FAILED = "failed"  # retry-eligible; the platform re-invokes synchronize
    DELETING = "deleting"
    RESOURCE_FREEING = "resource_freeing"
    REMOVED = "removed"


# --- Synchronize Results ---

@dataclass
class SiteOutcome:
    """Deployment outcome for one site."""
    element_id: str
    success: bool
    objects: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class SyncResult:
    """Result of synchronizing one intent."""
    target: str
    success: bool = False
    site_outcomes: list[SiteOutcome] = field(default_factory=list)
    topology: Optional[Topology] = None
    errors: list[str] = field(default_factory=list)
    validation_errors: dict[str, str] = field(default_factory=dict)

    @property
    def error(self) -> Optional[str]:
        return "; ".join(self.errors) if self.errors else None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "target": self.target,
            "success": self.success,
            "site_outcomes": [vars(o).copy() for o in self.site_outcomes],
            "topology": self.topology.to_dict() if self.topology else None,
            "errors": self.errors,
            "validation_errors": self.validation_errors,
        }


# --- Audit Report ---

@dataclass
class MisalignedObject:
    """An object missing from, or undesired on, a device."""
    path: str
    element_id: str
    is_configured: bool = True
    is_undesired: bool = False


@dataclass
class MisalignedAttribute:
    """An attribute whose actual value differs from the intended one."""
    path: str
    expected: Optional[str]
    actual: Optional[str]
    element_id: str


@dataclass
class AuditReport:
    """Result of auditing one intent against the network."""
    target: str
    intent_type: str
    misaligned_objects: list[MisalignedObject] = field(default_factory=list)
    misaligned_attributes: list[MisalignedAttribute] = field(default_factory=list)
    error: Optional[str] = None

    def add_object(self, obj: MisalignedObject) -> None:
        self.misaligned_objects.append(obj)

    def add_attribute(self, attribute: MisalignedAttribute) -> None:
        self.misaligned_attributes.append(attribute)

    @property
    def aligned(self) -> bool:
        return (
            self.error is None and
            not self.misaligned_objects and
            not self.misaligned_attributes
        )

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "intent_type": self.intent_type,
            "misaligned_objects": [vars(o).copy() for o in self.misaligned_objects],
            "misaligned_attributes": [vars(a).copy() for a in self.misaligned_attributes],
            "error": self.error,
        }


__all__ = [
    "Intent",
    "NetworkState",
    "Topology",
    "TopologyObject",
    "ReconcilePhase",
    "SiteOutcome",
    "SyncResult",
    "MisalignedObject",
    "MisalignedAttribute",
    "AuditReport",
]
