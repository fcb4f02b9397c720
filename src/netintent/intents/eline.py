"""EVPN E-Line service between two endpoints.

A service id is reserved per target in numeric pool
service-identifiers/global and used as EVI on both ends.
"""
import copy
from typing import Any, Optional

from ..errors import ValidationError
from ..model import Topology
from .base import IntentHandler

SERVICE_POOL = "service-identifiers"
SERVICE_POOL_SCOPE = "global"
SERVICE_ID_RANGE = (1, 65535)
ENDPOINTS = ("endpoint-a", "endpoint-b")


class ELineHandler(IntentHandler):
    """Point-to-point layer-2 service."""

    intent_type = "eline"

    def declare_pools(self) -> None:
        self.resources.create_numeric_pool(
            SERVICE_POOL, SERVICE_POOL_SCOPE, "EVPN service identifiers", *SERVICE_ID_RANGE
        )

    def _endpoints(self, config: dict[str, Any]) -> list[dict[str, Any]]:
        body = self.container(config)
        endpoints = [body.get(name) for name in ENDPOINTS]
        if not all(isinstance(e, dict) and "ne-id" in e for e in endpoints):
            raise ValidationError(
                "eline requires endpoint-a and endpoint-b with ne-id",
                {"Missing endpoint": "endpoint-a and endpoint-b must both define ne-id!"},
            )
        return endpoints

    def get_sites(self, target: str, config: dict[str, Any]) -> list[str]:
        return [endpoint["ne-id"] for endpoint in self._endpoints(config)]

    def get_site_parameters(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        site_names: dict[str, str],
    ) -> list[dict[str, Any]]:
        sites = [copy.deepcopy(endpoint) for endpoint in self._endpoints(config)]

        for index, (name, site) in enumerate(zip(ENDPOINTS, sites), start=1):
            site["ne-name"] = site_names.get(site["ne-id"])
            # used for eth-tag and eth-cfm mep-id
            site["id"] = index
            site["name"] = name

        return self.attach_peers(sites)

    def get_global_parameters(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
    ) -> dict[str, Any]:
        global_params = copy.deepcopy(self.container(config))
        global_params["service-id"] = self.resources.get_id(SERVICE_POOL, SERVICE_POOL_SCOPE, target)
        return global_params

    def get_state(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        topology: Optional[Topology],
    ) -> dict[str, Any]:
        return {"evi": self.resources.get_id(SERVICE_POOL, SERVICE_POOL_SCOPE, target)}

    def obtain_resources(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
    ) -> None:
        self.resources.obtain_id(SERVICE_POOL, SERVICE_POOL_SCOPE, target, owner=intent_type)

    def free_resources(self, target: str, config: dict[str, Any]) -> None:
        self.resources.release_id(SERVICE_POOL, SERVICE_POOL_SCOPE, target)

    def validate_hook(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        errors: dict[str, str],
    ) -> None:
        body = self.container(config)
        for name in ENDPOINTS:
            vlan = (body.get(name) or {}).get("vlan-id")
            if vlan is not None and not (isinstance(vlan, int) and 1 <= vlan <= 4094):
                errors[f"{name}/vlan-id"] = f"VLAN {vlan} out of range (1-4094)"
