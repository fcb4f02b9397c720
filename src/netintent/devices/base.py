"""Device access abstraction injected into the reconciliation engine.

Protocol clients (RESTCONF, NETCONF, gNMI, ...) live outside netintent;
they plug in by implementing DeviceAccess.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class DeviceAccess(ABC):
    """Abstract read/write access to managed network elements."""

    @abstractmethod
    async def query(self, element_id: str, path: str) -> dict[str, Any]:
        """Read configuration or state at a device model path.

        Returns:
            Structured device data, wrapped in its top-level container,
            e.g. ``{"nokia-conf:port": [{"port-id": "1/1/1", ...}]}``

        Raises:
            NotFoundError: If nothing is configured at ``path``
            DeviceUnavailableError: If the device cannot be reached
        """
        pass

    @abstractmethod
    async def patch(self, element_id: str, patch_id: str, items: dict[str, dict]) -> None:
        """Apply a set of edits to one device in a single transaction.

        Args:
            element_id: Target network element
            patch_id: Identifier of the edit, the intent target
            items: object name -> {"target": path, "operation": op, "value": data}

        Raises:
            DeploymentError: If the device rejected the edit
            DeviceUnavailableError: If the device cannot be reached
        """
        pass

    async def list_keys(self, element_id: str, list_path: str) -> list[str]:
        """Key leaf names of the YANG list at ``list_path``.

        Used by audit to match list entries. Devices without model
        metadata return no keys and lists are compared as whole values.
        """
        return []
