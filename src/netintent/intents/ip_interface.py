"""Physical/logical IP interface with IS-IS enabled.

Target: ``<ne-object>[ne-id='<element id>']#interface#<port-id>``

Supports brownfield discovery: the intent config is reconstructed from the
interface configured on the device, for SR OS and SR Linux families.
"""
import copy
import logging
from typing import Any, Awaitable, Callable
from urllib.parse import quote

from ..config.inventory import DeviceInventory
from ..devices.base import DeviceAccess
from ..errors import DeviceUnavailableError, NotFoundError
from .base import IntentHandler
from .target import correlation_id, element_id_of

logger = logging.getLogger(__name__)

SROS_FAMILIES = ("7750 SR", "7450 ESS", "7950 XRS", "7250 IXR")
SRLINUX_FAMILIES = ("7220 IXR SRLinux", "7250 IXR SRLinux", "7730 SXR SRLinux")

Discoverer = Callable[[DeviceAccess, str, str, dict], Awaitable[None]]


async def discover_from_sros(devices: DeviceAccess, element_id: str, port_id: str, config: dict) -> None:
    response = await devices.query(element_id, "nokia-conf:/configure/router=Base?content=config")
    router = (response.get("nokia-conf:router") or [{}])[0]
    interfaces = [i for i in router.get("interface", []) if i.get("port") == port_id]
    if not interfaces:
        return

    interface = interfaces[0]
    config["if-name"] = interface.get("interface-name")
    config["description"] = interface.get("description")
    config["admin-state"] = interface.get("admin-state")
    config["ip-address"] = interface.get("ipv4", {}).get("primary", {}).get("address")


async def discover_from_srlinux(devices: DeviceAccess, element_id: str, port_id: str, config: dict) -> None:
    path = f"srl_nokia-interfaces:/interface={quote(port_id, safe='')}?content=config"
    response = await devices.query(element_id, path)
    interface = (response.get("srl_nokia-interfaces:interface") or [{}])[0]

    config["description"] = interface.get("description")
    config["admin-state"] = interface.get("admin-state")
    subinterfaces = interface.get("subinterface") or []
    if subinterfaces:
        addresses = subinterfaces[0].get("ipv4", {}).get("address") or []
        prefixes = [a["ip-prefix"] for a in addresses if a.get("ip-prefix")]
        if prefixes:
            config["ip-address"] = prefixes[0].split("/")[0]


DISCOVERY_HELPERS: dict[str, Discoverer] = {
    **{family: discover_from_sros for family in SROS_FAMILIES},
    **{family: discover_from_srlinux for family in SRLINUX_FAMILIES},
}


class IpInterfaceHandler(IntentHandler):
    """IP interface on one port of one element."""

    intent_type = "ip-interface"

    def get_sites(self, target: str, config: dict[str, Any]) -> list[str]:
        return [element_id_of(target)]

    def get_site_parameters(
        self,
        intent_type: str,
        intent_type_version: int,
        target: str,
        config: dict[str, Any],
        site_names: dict[str, str],
    ) -> list[dict[str, Any]]:
        site = copy.deepcopy(self.container(config))
        site["ne-id"] = element_id_of(target)
        site["ne-name"] = site_names.get(site["ne-id"])
        site["port-id"] = correlation_id(target)
        return [site]

    async def discover(
        self,
        target: str,
        config: dict[str, Any],
        devices: DeviceAccess,
        inventory: DeviceInventory,
    ) -> dict[str, Any]:
        discovered = copy.deepcopy(self.container(config))
        element_id = element_id_of(target)
        port_id = correlation_id(target)

        logger.info(f"Discovering interface {port_id} on {element_id}")

        try:
            family = inventory.get_device_info(element_id).family
        except NotFoundError:
            logger.warning(f"Discovery skipped: {element_id} not in inventory")
            return discovered

        helper = DISCOVERY_HELPERS.get(family)
        if helper is None:
            logger.warning(f"No discovery helper for ne-id {element_id} ne-type {family!r}")
            return discovered

        try:
            await helper(devices, element_id, port_id, discovered)
        except (NotFoundError, DeviceUnavailableError) as e:
            logger.warning(f"Discovery on {element_id} incomplete: {e}")

        logger.info(f"Discovered config: {discovered}")
        return discovered
