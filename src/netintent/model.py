"""Intent data model shared by intent handlers and the engine."""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class NetworkState(str, Enum):
    """Desired network state of an intent."""
    PLANNED = "planned"        # resources reserved, nothing deployed
    DEPLOYED = "deployed"      # configuration pushed to the network
    SUSPENDED = "suspended"    # configuration removed, resources kept
    DELETED = "deleted"        # configuration removed, resources freed
    MISALIGNED = "misaligned"  # deployed, but audit found drift

    @property
    def renders_config(self) -> bool:
        """Whether synchronize pushes the rendered configuration."""
        return self in (NetworkState.DEPLOYED, NetworkState.MISALIGNED)


@dataclass
class TopologyObject:
    """A network object created by an intent on one element."""
    name: str
    path: str
    element_id: str


@dataclass
class Topology:
    """House-keeping record of what an intent created in the network.

    ``site_cleanups`` maps element id -> object name -> the edit that removes
    that object again (``{"target": path, "operation": "remove"}``).
    Persisted by the platform and handed back on the next reconciliation.
    """
    site_cleanups: dict[str, dict[str, dict]] = field(default_factory=dict)
    objects: list[TopologyObject] = field(default_factory=list)

    def copy_cleanups(self) -> dict[str, dict[str, dict]]:
        return copy.deepcopy(self.site_cleanups)

    def to_dict(self) -> dict:
        return {
            "site_cleanups": copy.deepcopy(self.site_cleanups),
            "objects": [vars(o).copy() for o in self.objects],
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Topology":
        if not data:
            return cls()
        return cls(
            site_cleanups=copy.deepcopy(data.get("site_cleanups", {})),
            objects=[TopologyObject(**o) for o in data.get("objects", [])],
        )


@dataclass
class Intent:
    """Declarative desired-state record for one target."""
    target: str
    intent_type: str
    config: dict[str, Any]
    intent_type_version: int = 1
    network_state: NetworkState = NetworkState.DEPLOYED
    topology: Optional[Topology] = None
