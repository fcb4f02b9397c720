"""Inter-router IP link with protocols enabled.

Config:
    {"iplink:iplink": {
        "description": "...",
        "endpoint-a": {"ne-id": "10.0.0.1", "port-id": "1/1/1"},
        "endpoint-b": {"ne-id": "10.0.0.2", "port-id": "1/1/3"}}}

Target: ``<template>#<scope>#<correlation-id>``. The link subnet (/31) is
reserved in pool ip-pool/global under the correlation id.
"""
import copy
import ipaddress
from typing import Any, Optional

from ..errors import ValidationError
from ..model import Topology
from .base import IntentHandler
from .target import correlation_id, first_number, template_of

IP_POOL = "ip-pool"
IP_POOL_SCOPE = "global"
IP_POOL_PREFIX = "192.168.192.0/18"
LINK_PURPOSE = "network-link"
LINK_PREFIX_LENGTH = 31


class IpLinkHandler(IntentHandler):
    """Point-to-point IP link between two routers."""

    intent_type = "iplink"

    def declare_pools(self) -> None:
        self.resources.create_ip_pool(
            IP_POOL, IP_POOL_SCOPE, "used for iplink", IP_POOL_PREFIX, LINK_PURPOSE
        )

    def get_sites(self, target: str, config: dict[str, Any]) -> list[str]:
        # every later step keys the link subnet by the correlation id
        correlation_id(target)
        body = self.container(config)
        try:
            return [body["endpoint-a"]["ne-id"], body["endpoint-b"]["ne-id"]]
        except (KeyError, TypeError):
            raise ValidationError(
                "endpoint-a and endpoint-b must both define ne-id",
                {"Missing endpoint": "endpoint-a and endpoint-b must both define ne-id!"},
            )

    def get_site_parameters(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        site_names: dict[str, str],
    ) -> list[dict[str, Any]]:
        body = self.container(config)
        sites = [copy.deepcopy(body["endpoint-a"]), copy.deepcopy(body["endpoint-b"])]

        for site in sites:
            site["ne-name"] = site_names.get(site["ne-id"])

        # endpoint-a takes the first address of the /31, endpoint-b the second
        subnet = ipaddress.ip_network(
            self.resources.get_subnet(IP_POOL, IP_POOL_SCOPE, correlation_id(target))
        )
        sites[0]["ip-address"] = str(subnet.network_address)
        sites[1]["ip-address"] = str(subnet.network_address + 1)
        sites[0]["prefix-length"] = sites[1]["prefix-length"] = subnet.prefixlen

        # peers are needed to build interface names and op-state audits
        return self.attach_peers(sites)

    def get_global_parameters(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
    ) -> dict[str, Any]:
        global_params = copy.deepcopy(self.container(config))

        cid = correlation_id(target)
        global_params["template"] = template_of(target)
        global_params["cid"] = cid
        # OAM-PM test sessions on SR OS need a numeric id
        global_params["test-id"] = first_number(cid)

        if global_params.get("description"):
            global_params["description"] = f"{intent_type}: {global_params['description']}"

        return global_params

    def get_state(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        topology: Optional[Topology],
    ) -> dict[str, Any]:
        return {"subnet": self.resources.get_subnet(IP_POOL, IP_POOL_SCOPE, correlation_id(target))}

    def obtain_resources(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
    ) -> None:
        self.resources.obtain_subnet(
            IP_POOL,
            IP_POOL_SCOPE,
            correlation_id(target),
            LINK_PREFIX_LENGTH,
            purpose=LINK_PURPOSE,
            owner=intent_type,
        )

    def free_resources(self, target: str, config: dict[str, Any]) -> None:
        self.resources.release_subnet(IP_POOL, IP_POOL_SCOPE, correlation_id(target))

    def validate_hook(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        errors: dict[str, str],
    ) -> None:
        body = self.container(config)
        site_a = (body.get("endpoint-a") or {}).get("ne-id")
        site_b = (body.get("endpoint-b") or {}).get("ne-id")

        if site_a is None or site_b is None:
            errors["Missing endpoint"] = "endpoint-a and endpoint-b must both define ne-id!"
        elif site_a == site_b:
            errors["Value inconsistency"] = "endpoint-a and endpoint-b must reside on different devices!"
