"""Base intent handler: the capability set every intent type provides.

One handler instance exists per intent type. It is shared by all intents
of that type, so handlers keep no per-intent state: every method receives
the target and config it works on.

Site and parameter derivation must be pure. They may read pools
(``resources.get``) but never allocate; allocation happens only in
``obtain_resources``.
"""
import copy
import logging
from typing import Any, Optional

from ..config.inventory import DeviceInventory
from ..devices.base import DeviceAccess
from ..templates import TemplateDispatcher
from ..model import NetworkState, Topology
from ..resources.admin import ResourceAdmin
from .target import ELEMENT_ID_PATTERN

logger = logging.getLogger(__name__)


class IntentHandler:
    """Default behaviour for single-site intents.

    Subclasses override what their intent type needs. The defaults treat
    the intent as golden configuration of one element: the site is the
    element named by the target and the site parameters are the config
    container itself.
    """

    intent_type: str = "generic"

    def __init__(
        self,
        resources: ResourceAdmin,
        dispatcher: Optional[TemplateDispatcher] = None,
    ):
        self.resources = resources
        self.dispatcher = dispatcher or TemplateDispatcher()
        self.declare_pools()

    def declare_pools(self) -> None:
        """Declare the resource pools this intent type allocates from."""
        pass

    @staticmethod
    def container(config: dict[str, Any]) -> dict[str, Any]:
        """
        The intent's top-level container.

        Configs arrive wrapped as ``{"<type>:<type>": {...}}``; unwrapped
        configs are returned unchanged.
        """
        if len(config) == 1:
            value = next(iter(config.values()))
            if isinstance(value, dict):
                return value
        return config

    # === Intent logic ===

    def get_sites(self, target: str, config: dict[str, Any]) -> list[str]:
        """Element ids touched by this intent, in a stable order."""
        match = ELEMENT_ID_PATTERN.search(target)
        return [match.group(1) if match else target]

    def get_site_parameters(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        site_names: dict[str, str],
    ) -> list[dict[str, Any]]:
        """One enriched configuration fragment per site, same order as get_sites."""
        site = copy.deepcopy(self.container(config))
        element_id = self.get_sites(target, config)[0]
        site["ne-id"] = element_id
        site["ne-name"] = site_names.get(element_id)
        return [site]

    def get_global_parameters(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
    ) -> dict[str, Any]:
        """Intent-wide settings shared by all sites."""
        return copy.deepcopy(self.container(config))

    def obtain_resources(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
    ) -> None:
        """Reserve shared resources. Must be safe to call again on retry."""
        pass

    def free_resources(self, target: str, config: dict[str, Any]) -> None:
        """Release everything obtain_resources reserved for ``target``."""
        pass

    def get_state(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        topology: Optional[Topology],
    ) -> dict[str, Any]:
        """Read-only display state. Uses pool lookups, never allocation."""
        return {}

    def get_template_name(self, element_id: str, family_type_release: Optional[str]) -> str:
        return self.dispatcher.get_template_name(element_id, family_type_release)

    # === Hooks ===

    def validate_hook(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        errors: dict[str, str],
    ) -> None:
        """Add business-rule violations to ``errors`` (field -> message)."""
        pass

    def pre_audit_hook(
        self,
        element_id: str,
        path: str,
        actual: dict[str, Any],
        intended: dict[str, Any],
    ) -> None:
        """Adjust actual and/or intended device config before comparison."""
        pass

    def pre_sync_hook(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        state: NetworkState,
    ) -> None:
        pass

    def post_sync_hook(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        state: NetworkState,
    ) -> None:
        """Runs after successful deployment. Frees resources once deleted."""
        if state == NetworkState.DELETED:
            self.free_resources(target, config)

    # === Discovery ===

    async def discover(
        self,
        target: str,
        config: dict[str, Any],
        devices: DeviceAccess,
        inventory: DeviceInventory,
    ) -> dict[str, Any]:
        """Reconstruct intent config from a live device (brownfield).

        Best effort: returns whatever could be discovered.
        """
        logger.warning(f"No discovery available for intent type {self.intent_type}")
        return copy.deepcopy(self.container(config))

    # === Helpers ===

    @staticmethod
    def attach_peers(sites: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Give each endpoint of a two-site intent a snapshot of the other.

        Snapshots are copies taken before linking, so sites never refer
        back to each other.
        """
        first, second = (copy.deepcopy(site) for site in sites)
        sites[0]["peer"] = second
        sites[1]["peer"] = first
        return sites
