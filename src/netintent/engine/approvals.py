"""Approved misalignments: device deviations an operator has accepted.

An approval names the audit path of a misaligned attribute or object on
one element. Approved attributes carry the device value that was
accepted, so synchronize keeps that value instead of overwriting it, and
audit drops approved entries from the report. Approvals of an intent are
removed once the intent is deleted.

Usage:
    store = ApprovedChangeStore()
    store.approve("iplink", "iplink#global#link-42", "10.0.0.1",
                  "/nokia-conf:/configure/router=Base/interface=link-1/1/1/description",
                  value="maintenance window 12")
    engine = ReconciliationEngine(inventory, resources, devices, renderer, approvals=store)
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any

from .audit import unwrap
from .schema import AuditReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovedChange:
    """One accepted deviation, addressed like audit report entries."""
    element_id: str
    path: str
    value: Any = None


class ApprovedChanges(ABC):
    """Approved misalignments consulted by the engine."""

    @abstractmethod
    def resolve_synchronize(
        self,
        intent_type: str,
        target: str,
        element_id: str,
        root_path: str,
        desired: dict[str, Any],
    ) -> dict[str, Any]:
        """Desired object value with approved device values kept."""

    @abstractmethod
    def resolve_audit(self, report: AuditReport) -> AuditReport:
        """Audit report without approved misalignments."""

    @abstractmethod
    def remove(self, intent_type: str, target: str) -> None:
        """Forget all approvals of an intent."""


class ApprovedChangeStore(ApprovedChanges):
    """In-memory approvals keyed by (intent type, target)."""

    def __init__(self):
        self._changes: dict[tuple[str, str], list[ApprovedChange]] = {}
        self._lock = threading.Lock()

    def approve(
        self,
        intent_type: str,
        target: str,
        element_id: str,
        path: str,
        value: Any = None,
    ) -> ApprovedChange:
        """Accept a deviation. Re-approving a path replaces its value."""
        change = ApprovedChange(element_id, path, copy.deepcopy(value))
        with self._lock:
            changes = self._changes.setdefault((intent_type, target), [])
            changes[:] = [c for c in changes if (c.element_id, c.path) != (element_id, path)]
            changes.append(change)
        logger.info(f"Approved misalignment {path} on {element_id} for {target}")
        return change

    def changes(self, intent_type: str, target: str) -> list[ApprovedChange]:
        with self._lock:
            return list(self._changes.get((intent_type, target), []))

    def resolve_synchronize(
        self,
        intent_type: str,
        target: str,
        element_id: str,
        root_path: str,
        desired: dict[str, Any],
    ) -> dict[str, Any]:
        resolved = copy.deepcopy(desired)
        body = unwrap(resolved)
        prefix = root_path.rstrip("/") + "/"

        for change in self.changes(intent_type, target):
            if change.element_id != element_id or change.value is None:
                continue
            if not change.path.startswith(prefix):
                continue

            keys = change.path[len(prefix):].split("/")
            # list entries are addressed by key; only plain containers are merged
            if any("=" in key for key in keys):
                logger.debug(f"Approved change {change.path} is inside a list, not merged")
                continue

            node = body
            for key in keys[:-1]:
                node = node.setdefault(key, {})
                if not isinstance(node, dict):
                    break
            else:
                node[keys[-1]] = copy.deepcopy(change.value)
                logger.info(f"Keeping approved value of {change.path} on {element_id}")

        return resolved

    def resolve_audit(self, report: AuditReport) -> AuditReport:
        approved = {(c.element_id, c.path) for c in self.changes(report.intent_type, report.target)}
        if not approved:
            return report

        return replace(
            report,
            misaligned_objects=[
                o for o in report.misaligned_objects if (o.element_id, o.path) not in approved
            ],
            misaligned_attributes=[
                a for a in report.misaligned_attributes if (a.element_id, a.path) not in approved
            ],
        )

    def remove(self, intent_type: str, target: str) -> None:
        with self._lock:
            removed = self._changes.pop((intent_type, target), None)
        if removed:
            logger.info(f"Removed {len(removed)} approved misalignment(s) of {target}")
