"""Shared test doubles: in-memory devices, a dict-driven template renderer."""
import json

import pytest

from netintent.config.inventory import DeviceInventory
from netintent.devices.base import DeviceAccess
from netintent.engine import ReconciliationEngine
from netintent.errors import DeploymentError, NotFoundError
from netintent.resources.admin import ResourceAdmin
from netintent.templates import TemplateRenderer

SROS = "7750 SR:23.10.R2:7750 SR-1"
SRLINUX = "7250 IXR SRLinux:23.10.3:7250 IXR-6e"


class FakeDevices(DeviceAccess):
    """Devices held in memory as element id -> model path -> data."""

    def __init__(self):
        self.data: dict[str, dict[str, dict]] = {}
        self.patches: list[tuple[str, str, dict]] = []
        self.keys: dict[str, list[str]] = {}
        self.rejected: set[str] = set()
        # element id -> exceptions raised by the next calls, in order
        self.failures: dict[str, list[Exception]] = {}
        self.calls = 0

    def set(self, element_id: str, path: str, data: dict) -> None:
        self.data.setdefault(element_id, {})[path] = data

    def _maybe_fail(self, element_id: str) -> None:
        self.calls += 1
        pending = self.failures.get(element_id)
        if pending:
            raise pending.pop(0)

    async def query(self, element_id, path):
        self._maybe_fail(element_id)
        path = path.split("?")[0]
        try:
            return self.data[element_id][path]
        except KeyError:
            raise NotFoundError(f"{path} not configured on {element_id}")

    async def patch(self, element_id, patch_id, items):
        self._maybe_fail(element_id)
        if element_id in self.rejected:
            raise DeploymentError(element_id, "patch rejected by device")
        self.patches.append((element_id, patch_id, items))

    async def list_keys(self, element_id, list_path):
        return self.keys.get(list_path, [])


class FakeRenderer(TemplateRenderer):
    """Templates are plain functions from render context to object map."""

    def __init__(self, templates: dict):
        self.templates = templates
        self.contexts: list[dict] = []

    def has_template(self, template_name):
        return template_name in self.templates

    def render(self, template_name, context):
        self.contexts.append(context)
        return json.dumps(self.templates[template_name](context))


def interface_path(port: str) -> str:
    return f"nokia-conf:/configure/router=Base/interface=link-{port}"


def state_path(port: str) -> str:
    return f"nokia-state:/state/router=Base/interface=link-{port}"


def link_objects(context: dict) -> dict:
    """Renders one routed interface per site of an iplink intent."""
    site = context["site"]
    port = site["port-id"]
    return {
        f"interface-{port}": {
            "config": {
                "target": interface_path(port),
                "operation": "replace",
                "value": {"nokia-conf:interface": [{
                    "interface-name": f"link-{port}",
                    "port": port,
                    "ipv4": {"primary": {
                        "address": site["ip-address"],
                        "prefix-length": site["prefix-length"],
                    }},
                }]},
            },
            "health": {
                state_path(port): {"oper-state": {"path": "oper-state", "equals": "up"}},
            },
            "indicators": {
                state_path(port): {"oper-state": {"path": "oper-state"}},
            },
        },
    }


def interface_config(port: str, address: str, prefix_length: int = 31) -> dict:
    """Device-side config as link_objects renders it."""
    return {"nokia-conf:interface": [{
        "interface-name": f"link-{port}",
        "port": port,
        "ipv4": {"primary": {"address": address, "prefix-length": prefix_length}},
    }]}


@pytest.fixture
def inventory():
    return DeviceInventory.from_dict({
        "10.0.0.1": {"name": "pe-paris", "family_type_release": SROS},
        "10.0.0.2": {"name": "pe-berlin", "family_type_release": SRLINUX},
        "10.0.0.3": {"name": "pe-madrid"},
        "10.0.0.4": {"name": "ce-lyon", "family_type_release": "ACME OS:1.0:X1"},
    })


@pytest.fixture
def resources():
    return ResourceAdmin()


@pytest.fixture
def devices():
    return FakeDevices()


@pytest.fixture
def renderer():
    return FakeRenderer({
        "mappers/sros.j2": link_objects,
        "mappers/srlinux.j2": link_objects,
    })


@pytest.fixture
def engine(inventory, resources, devices, renderer):
    return ReconciliationEngine(
        inventory, resources, devices, renderer,
        retry_attempts=3, retry_min_wait=0, retry_max_wait=0,
    )


@pytest.fixture
def link_config():
    return {"iplink:iplink": {
        "description": "paris-berlin",
        "endpoint-a": {"ne-id": "10.0.0.1", "port-id": "1/1/1"},
        "endpoint-b": {"ne-id": "10.0.0.2", "port-id": "ethernet-1/1"},
    }}
