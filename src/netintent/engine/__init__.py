"""Reconciliation Engine - drives intents to the network and audits them.

Usage:
    from netintent.engine import ReconciliationEngine, Intent

    engine = ReconciliationEngine(inventory, resources, devices, renderer)
    result = await engine.synchronize(Intent(
        target="iplink#global#link-42",
        intent_type="iplink",
        config={"iplink:iplink": {
            "endpoint-a": {"ne-id": "10.0.0.1", "port-id": "1/1/1"},
            "endpoint-b": {"ne-id": "10.0.0.2", "port-id": "1/1/1"},
        }},
    ))
"""

from .engine import ReconciliationEngine
from .schema import (
    Intent,
    NetworkState,
    Topology,
    TopologyObject,
    ReconcilePhase,
    SiteOutcome,
    SyncResult,
    MisalignedObject,
    MisalignedAttribute,
    AuditReport,
)
from .approvals import ApprovedChange, ApprovedChanges, ApprovedChangeStore
from .audit import ListKeyCache, compare_config, compare_state, summarize_audit

__all__ = [
    # Main engine
    "ReconciliationEngine",
    # Schema classes
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
    # Approved misalignments
    "ApprovedChange",
    "ApprovedChanges",
    "ApprovedChangeStore",
    # Audit comparison (for advanced use)
    "ListKeyCache",
    "compare_config",
    "compare_state",
    "summarize_audit",
]
