"""Tests for the Reconciliation Engine."""
import copy

import pytest
import pytest_asyncio

from conftest import (
    FakeRenderer,
    interface_config,
    interface_path,
    link_objects,
    state_path,
)
from netintent.engine import (
    ApprovedChangeStore,
    Intent,
    NetworkState,
    ReconcilePhase,
    ReconciliationEngine,
    Topology,
)
from netintent.errors import NotFoundError

LINK = "iplink#global#link-42"
PORT_A = "1/1/1"
PORT_B = "ethernet-1/1"


def link_intent(config, state=NetworkState.DEPLOYED, topology=None, target=LINK):
    return Intent(
        target=target,
        intent_type="iplink",
        config=config,
        network_state=state,
        topology=topology,
    )


def configure_devices(devices, address_a="192.168.192.0", address_b="192.168.192.1", oper_state="up"):
    """Put the link as rendered onto both devices."""
    devices.set("10.0.0.1", interface_path(PORT_A), interface_config(PORT_A, address_a))
    devices.set("10.0.0.2", interface_path(PORT_B), interface_config(PORT_B, address_b))
    for element_id, port in (("10.0.0.1", PORT_A), ("10.0.0.2", PORT_B)):
        devices.set(element_id, state_path(port), {"nokia-state:interface": [{"oper-state": oper_state}]})


class TestValidate:
    """Tests for engine.validate."""

    def test_valid(self, engine, link_config):
        assert engine.validate(link_intent(link_config)) == {}

    def test_value_inconsistency(self, engine, link_config):
        """Both endpoints on one device is rejected."""
        link_config["iplink:iplink"]["endpoint-b"]["ne-id"] = "10.0.0.1"

        errors = engine.validate(link_intent(link_config))

        assert errors["Value inconsistency"] == "endpoint-a and endpoint-b must reside on different devices!"

    def test_node_not_found(self, engine, link_config):
        link_config["iplink:iplink"]["endpoint-b"]["ne-id"] = "10.9.9.9"
        assert engine.validate(link_intent(link_config)) == {"Node not found": "10.9.9.9"}

    def test_family_unknown(self, engine, link_config):
        link_config["iplink:iplink"]["endpoint-b"]["ne-id"] = "10.0.0.3"
        assert engine.validate(link_intent(link_config)) == {"Family/Type/Release unknown": "10.0.0.3"}

    def test_device_type_unsupported(self, engine, link_config):
        """Sites whose template is missing are reported with the template name."""
        link_config["iplink:iplink"]["endpoint-b"]["ne-id"] = "10.0.0.4"

        errors = engine.validate(link_intent(link_config))

        assert errors == {
            "Device-type unsupported":
                "Template 'mappers/openconfig.j2' for node ce-lyon (ne-id: 10.0.0.4) not found!"
        }

    def test_missing_endpoint(self, engine):
        errors = engine.validate(link_intent({"iplink:iplink": {"endpoint-a": {"ne-id": "10.0.0.1"}}}))
        assert "Missing endpoint" in errors

    @pytest.mark.asyncio
    async def test_malformed_target(self, engine, resources, link_config):
        """A target without correlation id is rejected before anything changes."""
        intent = link_intent(link_config, target="iplink#global")

        assert engine.validate(intent) == {"target": "expected <scope>#<object>#<id>"}

        result = await engine.synchronize(intent)

        assert result.success is False
        assert result.validation_errors == {"target": "expected <scope>#<object>#<id>"}
        assert engine.phase("iplink#global") == ReconcilePhase.IDLE
        assert resources.get_pool("ip-pool", "global").allocations() == []

    def test_unknown_intent_type(self, engine):
        intent = Intent(target="l3vpn#global#vpn-1", intent_type="l3vpn", config={})
        assert engine.validate(intent) == {"Unsupported intent-type": "l3vpn"}


class TestSynchronize:
    """Tests for engine.synchronize."""

    @pytest.mark.asyncio
    async def test_deploy(self, engine, devices, link_config):
        """Each site gets its rendered objects in one patch."""
        result = await engine.synchronize(link_intent(link_config))

        assert result.success is True
        assert result.error is None
        assert [p[0] for p in devices.patches] == ["10.0.0.1", "10.0.0.2"]
        assert all(p[1] == LINK for p in devices.patches)

        element_id, _, items = devices.patches[0]
        item = items[f"interface-{PORT_A}"]
        assert item["operation"] == "replace"
        assert item["target"] == interface_path(PORT_A)
        assert item["value"]["nokia-conf:interface"][0]["ipv4"]["primary"]["address"] == "192.168.192.0"

        assert [o.success for o in result.site_outcomes] == [True, True]
        assert engine.phase(LINK) == ReconcilePhase.AUDITED

    @pytest.mark.asyncio
    async def test_topology_records_cleanups(self, engine, link_config):
        """Objects deployed with replace are remembered for house-keeping."""
        result = await engine.synchronize(link_intent(link_config))

        assert result.topology.site_cleanups == {
            "10.0.0.1": {f"interface-{PORT_A}": {"target": interface_path(PORT_A), "operation": "remove"}},
            "10.0.0.2": {f"interface-{PORT_B}": {"target": interface_path(PORT_B), "operation": "remove"}},
        }
        assert sorted(o.element_id for o in result.topology.objects) == ["10.0.0.1", "10.0.0.2"]
        assert result.to_dict()["topology"]["site_cleanups"] == result.topology.site_cleanups

    @pytest.mark.asyncio
    async def test_render_context(self, engine, renderer, link_config):
        """Templates see site, global and device descriptor."""
        await engine.synchronize(link_intent(link_config))

        context = renderer.contexts[0]
        assert context["mode"] == "sync"
        assert context["target"] == LINK
        assert context["ne_type"] == "7750 SR"
        assert context["ne_version"] == "23.10.R2"
        assert context["site"]["ne-name"] == "pe-paris"
        assert context["global"]["test-id"] == 42

    @pytest.mark.asyncio
    async def test_resync_is_stable(self, engine, resources, link_config):
        """A second synchronize reuses the same allocation."""
        first = await engine.synchronize(link_intent(link_config))
        second = await engine.synchronize(link_intent(link_config, topology=first.topology))

        assert second.success is True
        assert second.topology.site_cleanups == first.topology.site_cleanups
        assert len(resources.get_pool("ip-pool", "global").allocations()) == 1

    @pytest.mark.asyncio
    async def test_validation_failure(self, engine, devices, resources, link_config):
        """Invalid intents change neither the network nor the pools."""
        link_config["iplink:iplink"]["endpoint-b"]["ne-id"] = "10.0.0.1"

        result = await engine.synchronize(link_intent(link_config))

        assert result.success is False
        assert "Value inconsistency" in result.validation_errors
        assert devices.patches == []
        assert resources.get_pool("ip-pool", "global").allocations() == []
        assert engine.phase(LINK) == ReconcilePhase.IDLE

    @pytest.mark.asyncio
    async def test_render_failure_rolls_back_allocation(self, inventory, resources, devices, link_config):
        """Nothing is deployed and new allocations are released."""
        def broken(context):
            raise KeyError("interface-name")

        renderer = FakeRenderer({"mappers/sros.j2": broken, "mappers/srlinux.j2": link_objects})
        engine = ReconciliationEngine(inventory, resources, devices, renderer, retry_min_wait=0, retry_max_wait=0)

        result = await engine.synchronize(link_intent(link_config))

        assert result.success is False
        assert "rendering error" in result.error
        assert devices.patches == []
        with pytest.raises(NotFoundError):
            resources.get_subnet("ip-pool", "global", "link-42")
        assert engine.phase(LINK) == ReconcilePhase.FAILED

    @pytest.mark.asyncio
    async def test_invalid_template_output(self, inventory, resources, devices, link_config):
        class TextRenderer(FakeRenderer):
            def render(self, template_name, context):
                return "interface link-1 {"

        renderer = TextRenderer({"mappers/sros.j2": link_objects, "mappers/srlinux.j2": link_objects})
        engine = ReconciliationEngine(inventory, resources, devices, renderer)

        result = await engine.synchronize(link_intent(link_config))

        assert result.success is False
        assert "JSON error" in result.error

    @pytest.mark.asyncio
    async def test_partial_failure(self, engine, devices, resources, link_config):
        """A rejected site fails the sync, deployed sites stay deployed."""
        devices.rejected.add("10.0.0.2")

        result = await engine.synchronize(link_intent(link_config))

        assert result.success is False
        assert result.errors == ["[site: pe-berlin, 10.0.0.2] patch rejected by device"]
        assert [(o.element_id, o.success) for o in result.site_outcomes] == [
            ("10.0.0.1", True), ("10.0.0.2", False)
        ]
        assert list(result.topology.site_cleanups) == ["10.0.0.1"]
        assert resources.get_subnet("ip-pool", "global", "link-42") == "192.168.192.0/31"
        assert engine.phase(LINK) == ReconcilePhase.FAILED

    @pytest.mark.asyncio
    async def test_failed_site_keeps_previous_cleanups(self, engine, devices, link_config):
        first = await engine.synchronize(link_intent(link_config))
        devices.rejected.add("10.0.0.2")

        second = await engine.synchronize(link_intent(link_config, topology=first.topology))

        assert second.topology.site_cleanups == first.topology.site_cleanups
        assert len(second.topology.objects) == 2

    @pytest.mark.asyncio
    async def test_transient_error_is_retried(self, engine, devices, link_config):
        devices.failures["10.0.0.1"] = [ConnectionResetError("reset by peer")]

        result = await engine.synchronize(link_intent(link_config))

        assert result.success is True
        assert len(devices.patches) == 2

    @pytest.mark.asyncio
    async def test_device_unavailable(self, engine, devices, link_config):
        """Transient errors that persist end as an unavailable device."""
        devices.failures["10.0.0.1"] = [TimeoutError("timed out") for _ in range(3)]

        result = await engine.synchronize(link_intent(link_config))

        assert result.success is False
        assert result.errors == ["[site: pe-paris, 10.0.0.1] Device 10.0.0.1 unavailable: timed out"]

    @pytest.mark.asyncio
    async def test_objects_no_longer_rendered_are_removed(self, engine, devices, link_config):
        """Objects from the previous sync that are gone get removed."""
        old = {"target": "nokia-conf:/configure/router=Base/interface=old", "operation": "remove"}
        topology = Topology(site_cleanups={"10.0.0.1": {"old-interface": old}})

        result = await engine.synchronize(link_intent(link_config, topology=topology))

        items = devices.patches[0][2]
        assert items["old-interface"] == old
        assert items[f"interface-{PORT_A}"]["operation"] == "replace"
        assert "old-interface" not in result.topology.site_cleanups["10.0.0.1"]
        assert topology.site_cleanups["10.0.0.1"] == {"old-interface": old}

    @pytest.mark.asyncio
    async def test_delete(self, engine, devices, resources, link_config):
        """Delete removes deployed objects and frees resources."""
        deployed = await engine.synchronize(link_intent(link_config))
        devices.patches.clear()

        result = await engine.synchronize(
            link_intent(link_config, state=NetworkState.DELETED, topology=deployed.topology)
        )

        assert result.success is True
        assert devices.patches == [
            ("10.0.0.1", LINK, {f"interface-{PORT_A}": {"target": interface_path(PORT_A), "operation": "remove"}}),
            ("10.0.0.2", LINK, {f"interface-{PORT_B}": {"target": interface_path(PORT_B), "operation": "remove"}}),
        ]
        assert result.topology.site_cleanups == {}
        assert result.topology.objects == []
        with pytest.raises(NotFoundError):
            resources.get_subnet("ip-pool", "global", "link-42")
        assert engine.phase(LINK) == ReconcilePhase.IDLE
        assert LINK not in engine.phases()

    @pytest.mark.asyncio
    async def test_removed_targets_are_forgotten(self, engine, link_config):
        """Create and delete cycles leave no phase entries behind."""
        for n in range(20):
            target = f"iplink#global#link-{n}"
            deployed = await engine.synchronize(link_intent(link_config, target=target))
            await engine.synchronize(
                link_intent(link_config, state=NetworkState.DELETED, topology=deployed.topology, target=target)
            )

        kept = await engine.synchronize(link_intent(link_config))

        assert kept.success is True
        assert engine.phases() == {LINK: ReconcilePhase.AUDITED}

    @pytest.mark.asyncio
    async def test_recreate_after_delete(self, engine, link_config):
        """Deleting then recreating the same target obtains again."""
        deployed = await engine.synchronize(link_intent(link_config))
        await engine.synchronize(link_intent(link_config, state=NetworkState.DELETED, topology=deployed.topology))

        again = await engine.synchronize(link_intent(link_config))

        assert again.success is True
        assert await engine.get_state(link_intent(link_config)) == {
            "state": {"subnet": "192.168.192.0/31"}, "indicators": {}
        }

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_resources(self, engine, devices, resources, link_config):
        deployed = await engine.synchronize(link_intent(link_config))
        devices.rejected.add("10.0.0.1")

        result = await engine.synchronize(
            link_intent(link_config, state=NetworkState.DELETED, topology=deployed.topology)
        )

        assert result.success is False
        assert list(result.topology.site_cleanups) == ["10.0.0.1"]
        assert resources.get_subnet("ip-pool", "global", "link-42") == "192.168.192.0/31"

    @pytest.mark.asyncio
    async def test_suspend_keeps_resources(self, engine, devices, resources, link_config):
        deployed = await engine.synchronize(link_intent(link_config))

        result = await engine.synchronize(
            link_intent(link_config, state=NetworkState.SUSPENDED, topology=deployed.topology)
        )

        assert result.success is True
        assert result.topology.site_cleanups == {}
        assert devices.patches[-1][2][f"interface-{PORT_B}"]["operation"] == "remove"
        assert resources.get_subnet("ip-pool", "global", "link-42") == "192.168.192.0/31"

    @pytest.mark.asyncio
    async def test_planned_only_obtains(self, engine, devices, resources, link_config):
        result = await engine.synchronize(link_intent(link_config, state=NetworkState.PLANNED))

        assert result.success is True
        assert devices.patches == []
        assert result.topology is None
        assert resources.get_subnet("ip-pool", "global", "link-42") == "192.168.192.0/31"

    @pytest.mark.asyncio
    async def test_ignored_children_keep_device_values(self, inventory, resources, devices, link_config):
        """Pre-approved device values are carried into the patch."""
        def annotated(context):
            objects = link_objects(context)
            for obj in objects.values():
                obj["config"]["ignore-children"] = ["description"]
            return objects

        renderer = FakeRenderer({"mappers/sros.j2": annotated, "mappers/srlinux.j2": annotated})
        engine = ReconciliationEngine(inventory, resources, devices, renderer)
        on_device = interface_config(PORT_A, "192.168.192.0")
        on_device["nokia-conf:interface"][0]["description"] = "set by operations"
        devices.set("10.0.0.1", interface_path(PORT_A), on_device)

        result = await engine.synchronize(link_intent(link_config))

        assert result.success is True
        patched_a = devices.patches[0][2][f"interface-{PORT_A}"]["value"]["nokia-conf:interface"][0]
        patched_b = devices.patches[1][2][f"interface-{PORT_B}"]["value"]["nokia-conf:interface"][0]
        assert patched_a["description"] == "set by operations"
        assert "description" not in patched_b


class TestAudit:
    """Tests for engine.audit."""

    @pytest_asyncio.fixture
    async def deployed(self, engine, link_config):
        result = await engine.synchronize(link_intent(link_config))
        return link_intent(link_config, topology=result.topology)

    @pytest.mark.asyncio
    async def test_aligned(self, engine, devices, deployed):
        configure_devices(devices)

        report = await engine.audit(deployed)

        assert report.aligned
        assert report.to_dict()["misaligned_objects"] == []

    @pytest.mark.asyncio
    async def test_missing_object(self, engine, devices, deployed):
        configure_devices(devices)
        del devices.data["10.0.0.2"][interface_path(PORT_B)]

        report = await engine.audit(deployed)

        assert len(report.misaligned_objects) == 1
        missing = report.misaligned_objects[0]
        assert missing.path == f"/{interface_path(PORT_B)}"
        assert missing.element_id == "10.0.0.2"
        assert missing.is_configured is True
        assert missing.is_undesired is False

    @pytest.mark.asyncio
    async def test_attribute_drift(self, engine, devices, deployed):
        configure_devices(devices, address_a="10.0.0.9")

        report = await engine.audit(deployed)

        assert len(report.misaligned_attributes) == 1
        drift = report.misaligned_attributes[0]
        assert drift.path == f"/{interface_path(PORT_A)}/ipv4/primary/address"
        assert (drift.expected, drift.actual) == ("192.168.192.0", "10.0.0.9")
        assert drift.element_id == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_health_check(self, engine, devices, deployed):
        configure_devices(devices, oper_state="down")

        report = await engine.audit(deployed)

        paths = {(a.path, a.expected, a.actual) for a in report.misaligned_attributes}
        assert paths == {
            (f"/{state_path(PORT_A)}/oper-state", "up", "down"),
            (f"/{state_path(PORT_B)}/oper-state", "up", "down"),
        }

    @pytest.mark.asyncio
    async def test_missing_state(self, engine, devices, deployed):
        configure_devices(devices)
        del devices.data["10.0.0.1"][state_path(PORT_A)]

        report = await engine.audit(deployed)

        assert [(o.path, o.is_configured) for o in report.misaligned_objects] == [
            (f"/{state_path(PORT_A)}", False)
        ]

    @pytest.mark.asyncio
    async def test_leftover_objects_are_undesired(self, engine, devices, deployed):
        configure_devices(devices)
        deployed.topology.site_cleanups["10.0.0.1"]["old-interface"] = {
            "target": "nokia-conf:/configure/router=Base/interface=old", "operation": "remove"
        }

        report = await engine.audit(deployed)

        assert [(o.path, o.is_undesired) for o in report.misaligned_objects] == [
            ("/nokia-conf:/configure/router=Base/interface=old", True)
        ]

    @pytest.mark.asyncio
    async def test_device_unavailable(self, engine, devices, deployed):
        """Unreachable devices degrade to a report error."""
        configure_devices(devices)
        devices.failures["10.0.0.1"] = [ConnectionRefusedError("refused") for _ in range(3)]

        report = await engine.audit(deployed)

        assert not report.aligned
        assert "Device 10.0.0.1 unavailable" in report.error

    @pytest.mark.asyncio
    async def test_audit_never_obtains(self, engine, resources, link_config):
        report = await engine.audit(link_intent(link_config))

        assert "must be obtained first" in report.error
        assert resources.get_pool("ip-pool", "global").allocations() == []

    @pytest.mark.asyncio
    async def test_deleted_intent_reports_leftovers(self, engine, devices, deployed):
        deleted = copy.copy(deployed)
        deleted.network_state = NetworkState.DELETED

        report = await engine.audit(deleted)

        assert len(report.misaligned_objects) == 2
        assert all(o.is_undesired for o in report.misaligned_objects)
        assert devices.calls == 2


class TestApprovedMisalignments:
    """Tests for approved misalignments in synchronize and audit."""

    ADDRESS_A = f"/{interface_path(PORT_A)}/ipv4/primary/address"
    DESCRIPTION_A = f"/{interface_path(PORT_A)}/description"

    @pytest.fixture
    def approvals(self):
        return ApprovedChangeStore()

    @pytest.fixture
    def approving_engine(self, inventory, resources, devices, renderer, approvals):
        return ReconciliationEngine(
            inventory, resources, devices, renderer,
            approvals=approvals, retry_min_wait=0, retry_max_wait=0,
        )

    @pytest.mark.asyncio
    async def test_sync_keeps_approved_value(self, approving_engine, approvals, devices, link_config):
        approvals.approve("iplink", LINK, "10.0.0.1", self.DESCRIPTION_A, value="ops note")

        result = await approving_engine.synchronize(link_intent(link_config))

        assert result.success is True
        patched_a = devices.patches[0][2][f"interface-{PORT_A}"]["value"]["nokia-conf:interface"][0]
        patched_b = devices.patches[1][2][f"interface-{PORT_B}"]["value"]["nokia-conf:interface"][0]
        assert patched_a["description"] == "ops note"
        assert "description" not in patched_b

    @pytest.mark.asyncio
    async def test_approvals_of_other_targets_ignored(self, approving_engine, approvals, devices, link_config):
        approvals.approve("iplink", "iplink#global#link-7", "10.0.0.1", self.DESCRIPTION_A, value="ops note")

        await approving_engine.synchronize(link_intent(link_config))

        patched_a = devices.patches[0][2][f"interface-{PORT_A}"]["value"]["nokia-conf:interface"][0]
        assert "description" not in patched_a

    @pytest.mark.asyncio
    async def test_audit_drops_approved_entries(self, approving_engine, approvals, devices, link_config):
        deployed = await approving_engine.synchronize(link_intent(link_config))
        configure_devices(devices, address_a="10.0.0.9")
        approvals.approve("iplink", LINK, "10.0.0.1", self.ADDRESS_A, value="10.0.0.9")

        report = await approving_engine.audit(link_intent(link_config, topology=deployed.topology))

        assert report.aligned

    @pytest.mark.asyncio
    async def test_audit_keeps_unapproved_entries(self, approving_engine, approvals, devices, link_config):
        deployed = await approving_engine.synchronize(link_intent(link_config))
        configure_devices(devices, address_a="10.0.0.9", oper_state="down")
        approvals.approve("iplink", LINK, "10.0.0.1", self.ADDRESS_A, value="10.0.0.9")

        report = await approving_engine.audit(link_intent(link_config, topology=deployed.topology))

        assert {(a.element_id, a.path) for a in report.misaligned_attributes} == {
            ("10.0.0.1", f"/{state_path(PORT_A)}/oper-state"),
            ("10.0.0.2", f"/{state_path(PORT_B)}/oper-state"),
        }

    @pytest.mark.asyncio
    async def test_delete_removes_approvals(self, approving_engine, approvals, link_config):
        deployed = await approving_engine.synchronize(link_intent(link_config))
        approvals.approve("iplink", LINK, "10.0.0.1", self.DESCRIPTION_A, value="ops note")

        result = await approving_engine.synchronize(
            link_intent(link_config, state=NetworkState.DELETED, topology=deployed.topology)
        )

        assert result.success is True
        assert approvals.changes("iplink", LINK) == []

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_approvals(self, approving_engine, approvals, devices, link_config):
        deployed = await approving_engine.synchronize(link_intent(link_config))
        approvals.approve("iplink", LINK, "10.0.0.1", self.DESCRIPTION_A, value="ops note")
        devices.rejected.add("10.0.0.2")

        result = await approving_engine.synchronize(
            link_intent(link_config, state=NetworkState.DELETED, topology=deployed.topology)
        )

        assert result.success is False
        assert len(approvals.changes("iplink", LINK)) == 1


class TestGetState:
    """Tests for engine.get_state."""

    @pytest.mark.asyncio
    async def test_state_and_indicators(self, engine, devices, link_config):
        await engine.synchronize(link_intent(link_config))
        configure_devices(devices)

        state = await engine.get_state(link_intent(link_config))

        assert state == {
            "state": {"subnet": "192.168.192.0/31"},
            "indicators": {"oper-state": {"10.0.0.1": "up", "10.0.0.2": "up"}},
        }

    @pytest.mark.asyncio
    async def test_deleted(self, engine, link_config):
        assert await engine.get_state(link_intent(link_config, state=NetworkState.DELETED)) is None

    @pytest.mark.asyncio
    async def test_not_obtained(self, engine, link_config):
        assert await engine.get_state(link_intent(link_config)) is None


class TestDiscoveryAndSites:
    """Tests for discover and targeted_devices."""

    @pytest.mark.asyncio
    async def test_targeted_devices(self, engine, link_config):
        assert await engine.targeted_devices(link_intent(link_config)) == ["10.0.0.1", "10.0.0.2"]

    @pytest.mark.asyncio
    async def test_discover(self, engine, devices):
        devices.set("10.0.0.1", "nokia-conf:/configure/router=Base", {"nokia-conf:router": [{
            "interface": [{"interface-name": "to-core", "port": "1/1/3", "admin-state": "enable"}],
        }]})
        intent = Intent(target="/ne[ne-id='10.0.0.1']#interface#1/1/3", intent_type="ip-interface", config={})

        discovered = await engine.discover(intent)

        assert discovered["if-name"] == "to-core"
        assert discovered["admin-state"] == "enable"

    def test_handlers_are_shared(self, engine):
        assert engine.handler_for("iplink") is engine.handler_for("iplink")
