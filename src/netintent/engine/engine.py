"""Reconciliation engine - drives intents through their lifecycle.

Provides the entry points the intent platform calls:
1. validate: contextual errors for a target and config
2. synchronize: obtain resources, render per site, deploy per site
3. audit: compare rendered objects against live device config and state
4. get_state: read-only state and indicators
5. discover: brownfield config reconstruction
"""
import copy
import json
import logging
from typing import Any, Awaitable, Callable, Optional

from ..config.inventory import DeviceInventory
from ..devices.base import DeviceAccess
from ..errors import (
    DeploymentError,
    DeviceUnavailableError,
    IntentError,
    NotFoundError,
    TemplateError,
    ValidationError,
)
from ..intents import IntentHandler, create_handler
from ..resources.admin import ResourceAdmin
from ..templates import TemplateDispatcher, TemplateRenderer
from ..utils.logging_config import timed, timed_section
from ..utils.retry import RETRYABLE_EXCEPTIONS, with_retry
from .approvals import ApprovedChanges
from .audit import ListKeyCache, compare_config, compare_state, lookup, summarize_audit, unwrap
from .schema import (
    AuditReport,
    Intent,
    MisalignedObject,
    NetworkState,
    ReconcilePhase,
    SiteOutcome,
    SyncResult,
    Topology,
    TopologyObject,
)

logger = logging.getLogger(__name__)

SiteObjects = dict[str, dict[str, Any]]


class ReconciliationEngine:
    """
    Reconciles intents against the network.

    Usage:
        engine = ReconciliationEngine(inventory, resources, devices, renderer)
        errors = engine.validate(intent)
        result = await engine.synchronize(intent)
        report = await engine.audit(intent)
    """

    def __init__(
        self,
        inventory: DeviceInventory,
        resources: ResourceAdmin,
        devices: DeviceAccess,
        renderer: TemplateRenderer,
        dispatcher: Optional[TemplateDispatcher] = None,
        handlers: Optional[dict[str, IntentHandler]] = None,
        approvals: Optional[ApprovedChanges] = None,
        retry_attempts: int = 3,
        retry_min_wait: float = 1,
        retry_max_wait: float = 10,
    ):
        """
        Initialize the engine.

        Args:
            inventory: Network element inventory
            resources: Pool store shared by all intent handlers
            devices: Device access used for deployment, audit and discovery
            renderer: Renders deployment templates into device objects
            dispatcher: Template selection rules (default rules if omitted)
            handlers: Pre-built handlers by intent type, others are created
                on first use
            approvals: Approved misalignments kept by synchronize and
                dropped from audit reports (disabled if omitted)
            retry_attempts: Attempts per device call on transient errors
            retry_min_wait: Minimum backoff between attempts (seconds)
            retry_max_wait: Maximum backoff between attempts (seconds)
        """
        self.inventory = inventory
        self.resources = resources
        self.devices = devices
        self.renderer = renderer
        self.dispatcher = dispatcher or TemplateDispatcher()
        self.retry_attempts = retry_attempts
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self.approvals = approvals
        self._handlers: dict[str, IntentHandler] = dict(handlers or {})
        self._phases: dict[str, ReconcilePhase] = {}

    # === Handlers and phases ===

    def handler_for(self, intent_type: str) -> IntentHandler:
        """Handler instance for an intent type, shared by all its intents."""
        if intent_type not in self._handlers:
            try:
                self._handlers[intent_type] = create_handler(intent_type, self.resources, self.dispatcher)
            except ValueError as e:
                raise ValidationError(str(e), {"Unsupported intent-type": intent_type}) from e
        return self._handlers[intent_type]

    def phase(self, target: str) -> ReconcilePhase:
        return self._phases.get(target, ReconcilePhase.IDLE)

    def phases(self) -> dict[str, ReconcilePhase]:
        """Phase of every target the engine is tracking."""
        return dict(self._phases)

    def _set_phase(self, target: str, phase: ReconcilePhase) -> None:
        previous = self.phase(target)
        logger.info(f"{target}: {previous.value} -> {phase.value}")
        if phase == ReconcilePhase.REMOVED:
            # removed targets are idle again
            self._phases.pop(target, None)
        else:
            self._phases[target] = phase

    # === Device access ===

    async def _device_call(
        self,
        element_id: str,
        operation: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """Call device access with retry; transient errors end as DeviceUnavailableError."""
        @with_retry(
            max_attempts=self.retry_attempts,
            min_wait=self.retry_min_wait,
            max_wait=self.retry_max_wait,
        )
        async def attempt() -> Any:
            return await operation(element_id, *args)

        try:
            return await attempt()
        except RETRYABLE_EXCEPTIONS as e:
            raise DeviceUnavailableError(element_id, str(e)) from e

    async def _query(self, element_id: str, path: str) -> dict[str, Any]:
        return await self._device_call(element_id, self.devices.query, path)

    async def _patch(self, element_id: str, patch_id: str, items: dict[str, dict]) -> None:
        await self._device_call(element_id, self.devices.patch, patch_id, items)

    # === Rendering ===

    def _sites(self, handler: IntentHandler, intent: Intent) -> list[dict[str, Any]]:
        return handler.get_site_parameters(
            intent.intent_type,
            intent.intent_type_version,
            intent.target,
            intent.config,
            self.inventory.site_names(),
        )

    def _site_objects(
        self,
        handler: IntentHandler,
        intent: Intent,
        global_params: dict[str, Any],
        site: dict[str, Any],
        mode: str,
    ) -> SiteObjects:
        """
        Render the deployment template of one site into its objects.

        The same rendering is used for sync, audit and state so that all
        three see identical desired objects.

        Raises:
            NotFoundError: If the site is not in the inventory
            TemplateError: If the template is missing or its output is invalid
        """
        element_id = site["ne-id"]
        info = self.inventory.get_device_info(element_id)
        descriptor = info.family_type_release or ""
        template_name = handler.get_template_name(element_id, descriptor)
        node = f"node {info.name} (ne-id: {element_id})"

        if not self.renderer.has_template(template_name):
            raise TemplateError(f"Deploy-template '{template_name}' for {node} not found!")

        context = {
            "intent_type": intent.intent_type,
            "intent_type_version": intent.intent_type_version,
            "target": intent.target,
            "site": site,
            "global": global_params,
            "ne_type": info.family,
            "ne_version": info.release,
            "family_type_release": descriptor,
            "mode": mode,
        }

        try:
            rendered = self.renderer.render(template_name, context)
        except TemplateError:
            raise
        except Exception as e:
            logger.error(f"Rendering {template_name} for {node} failed: {e}")
            logger.error(f"Input: {context}")
            raise TemplateError(f"Deploy-template '{template_name}' issue for {node}: rendering error") from e

        try:
            objects = json.loads(rendered)
        except json.JSONDecodeError as e:
            logger.error(f"Template {template_name} produced invalid JSON for {node}: {e}")
            logger.error(f"Output: {rendered}")
            raise TemplateError(f"Deploy-template '{template_name}' issue for {node}: JSON error") from e

        if not isinstance(objects, dict):
            raise TemplateError(f"Deploy-template '{template_name}' issue for {node}: expected an object map")
        return objects

    async def _merge_ignored_children(self, element_id: str, config: dict[str, Any]) -> None:
        """Carry pre-approved device values of ignored children into the desired value."""
        try:
            response = await self._query(element_id, f"{config['target']}?content=config")
        except NotFoundError:
            logger.info("Merge of pre-approved misalignments skipped, object not configured on device")
            return

        actual = unwrap(response)
        desired = unwrap(config["value"])

        for path in config["ignore-children"]:
            keys = path.split("/")
            source, dest = actual, desired
            for i, key in enumerate(keys):
                if not isinstance(source, dict) or key not in source:
                    break
                if i < len(keys) - 1:
                    source = source[key]
                    dest = dest.setdefault(key, {})
                else:
                    dest[key] = copy.deepcopy(source[key])

    # === Entry points ===

    @timed("validate")
    def validate(self, intent: Intent) -> dict[str, str]:
        """
        Validate target and config of an intent.

        Checks that every site is a known element with a supported device
        type, then applies the intent type's business rules.

        Returns:
            Contextual errors, field -> message. Empty if valid.
        """
        logger.info(f"Validating {intent.target} ({intent.intent_type})")
        errors: dict[str, str] = {}

        try:
            handler = self.handler_for(intent.intent_type)
            sites = handler.get_sites(intent.target, intent.config)
        except ValidationError as e:
            return dict(e.fields)

        for element_id in sites:
            if not self.inventory.has_device(element_id):
                errors["Node not found"] = element_id
                continue

            info = self.inventory.get_device_info(element_id)
            if not info.family_type_release:
                errors["Family/Type/Release unknown"] = element_id
                continue

            template_name = handler.get_template_name(element_id, info.family_type_release)
            if not self.renderer.has_template(template_name):
                errors["Device-type unsupported"] = (
                    f"Template '{template_name}' for node {info.name} (ne-id: {element_id}) not found!"
                )

        try:
            handler.validate_hook(
                intent.intent_type, intent.intent_type_version, intent.target, intent.config, errors
            )
        except ValidationError as e:
            errors.update(e.fields)

        if errors:
            logger.warning(f"Validation of {intent.target} failed: {errors}")
        return errors

    @timed("synchronize")
    async def synchronize(self, intent: Intent) -> SyncResult:
        """
        Bring the network in line with an intent.

        Deployment is per site and not transactional across sites: sites
        that fail keep their previous house-keeping record and are fixed by
        the next synchronize. Nothing is retried internally beyond transient
        device errors.

        Returns:
            SyncResult with per-site outcomes and the new topology
        """
        target = intent.target
        state = intent.network_state
        deleting = state == NetworkState.DELETED
        result = SyncResult(target=target, topology=intent.topology)
        previous_phase = self.phase(target)

        logger.info(f"Synchronizing {target} ({intent.intent_type}) in state {state.value}")

        # Step 1: Validate
        if not deleting:
            self._set_phase(target, ReconcilePhase.VALIDATING)
            errors = self.validate(intent)
            if errors:
                result.validation_errors = errors
                result.errors = [f"{field}: {message}" for field, message in errors.items()]
                self._set_phase(target, previous_phase)
                return result
        else:
            self._set_phase(target, ReconcilePhase.DELETING)

        try:
            handler = self.handler_for(intent.intent_type)
            args = (intent.intent_type, intent.intent_type_version, target, intent.config)
            handler.pre_sync_hook(*args, state)

            # Step 2: Recall objects of the previous synchronize for house-keeping
            cleanups = intent.topology.copy_cleanups() if intent.topology else {}
            site_items = copy.deepcopy(cleanups)
            if cleanups:
                logger.info(f"Site cleanups restored: {cleanups}")

            # Steps 3-4: Obtain resources and render all sites before any device write
            with self.resources.all_or_nothing():
                if not deleting:
                    self._set_phase(target, ReconcilePhase.RESOURCE_OBTAINING)
                    handler.obtain_resources(*args)

                if state.renders_config:
                    self._set_phase(target, ReconcilePhase.COMPUTING_PARAMETERS)
                    global_params = handler.get_global_parameters(*args)
                    for site in self._sites(handler, intent):
                        element_id = site["ne-id"]
                        objects = self._site_objects(handler, intent, global_params, site, "sync")
                        items = site_items.setdefault(element_id, {})
                        for name, obj in objects.items():
                            if "config" not in obj:
                                continue
                            config = copy.deepcopy(obj["config"])
                            if config.get("value") and config.get("ignore-children"):
                                await self._merge_ignored_children(element_id, config)
                            if config.get("value") and self.approvals is not None:
                                config["value"] = self.approvals.resolve_synchronize(
                                    intent.intent_type, target, element_id, f"/{config['target']}", config["value"]
                                )
                            items[name] = config

            # Step 5: Deploy per site
            if state != NetworkState.PLANNED:
                self._set_phase(target, ReconcilePhase.SYNCHRONIZING)
                result.topology = await self._deploy(target, site_items, cleanups, result)

        except IntentError as e:
            logger.error(f"Synchronize of {target} failed: {e}")
            if isinstance(e, ValidationError):
                result.validation_errors = dict(e.fields)
            result.errors.append(str(e))

        if result.errors:
            result.success = False
            self._set_phase(target, ReconcilePhase.FAILED)
            return result

        # Step 6: Post-sync (frees resources on delete)
        if deleting:
            if self.approvals is not None:
                self.approvals.remove(intent.intent_type, target)
            self._set_phase(target, ReconcilePhase.RESOURCE_FREEING)
        handler.post_sync_hook(*args, state)

        result.success = True
        self._set_phase(target, ReconcilePhase.REMOVED if deleting else ReconcilePhase.AUDITED)
        return result

    async def _deploy(
        self,
        target: str,
        site_items: dict[str, dict[str, dict]],
        cleanups: dict[str, dict[str, dict]],
        result: SyncResult,
    ) -> Topology:
        """Patch every site and rebuild the house-keeping record."""
        names = self.inventory.site_names()
        objects: list[TopologyObject] = []

        for element_id, items in site_items.items():
            try:
                async with timed_section("patch", context=element_id, objects=len(items)):
                    await self._patch(element_id, target, items)
            except (DeploymentError, DeviceUnavailableError) as e:
                label = f"{names[element_id]}, {element_id}" if element_id in names else element_id
                logger.error(f"Deployment on {label} failed with {e}")
                result.errors.append(f"[site: {label}] {e}")
                result.site_outcomes.append(SiteOutcome(element_id, False, error=str(e)))

                # keep what the site had before so it is cleaned up later
                for name, cleanup in cleanups.get(element_id, {}).items():
                    objects.append(TopologyObject(name, cleanup["target"], element_id))
                continue

            # only objects deployed with "replace" are owned by the intent
            owned = {
                name: {"target": item["target"], "operation": "remove"}
                for name, item in items.items()
                if item.get("operation") == "replace"
            }
            if owned:
                cleanups[element_id] = owned
            else:
                cleanups.pop(element_id, None)

            objects.extend(TopologyObject(name, c["target"], element_id) for name, c in owned.items())
            result.site_outcomes.append(SiteOutcome(element_id, True, objects=list(items)))
            logger.info(f"Deployed {len(items)} object(s) to {element_id}")

        return Topology(site_cleanups=cleanups, objects=objects)

    @timed("audit")
    async def audit(self, intent: Intent) -> AuditReport:
        """
        Compare the network against an intent. Read-only.

        Uses pool lookups only, never allocation. Unreachable devices end
        the audit with ``report.error`` set.
        """
        target = intent.target
        report = AuditReport(target=target, intent_type=intent.intent_type)
        leftovers = intent.topology.copy_cleanups() if intent.topology else {}
        list_keys = ListKeyCache(self.devices)

        logger.info(f"Auditing {target} ({intent.intent_type}) in state {intent.network_state.value}")

        try:
            handler = self.handler_for(intent.intent_type)

            if intent.network_state.renders_config:
                global_params = handler.get_global_parameters(
                    intent.intent_type, intent.intent_type_version, target, intent.config
                )
                for site in self._sites(handler, intent):
                    element_id = site["ne-id"]
                    objects = self._site_objects(handler, intent, global_params, site, "audit")

                    for name, obj in objects.items():
                        config = obj.get("config")
                        if not config:
                            continue
                        if "value" in config:
                            await self._audit_config(handler, element_id, config, report, list_keys)
                        # still desired, so not a leftover
                        leftovers.get(element_id, {}).pop(name, None)

                    for obj in objects.values():
                        for path, expected in (obj.get("health") or {}).items():
                            await self._audit_health(element_id, path, expected, report)

            for element_id, objects in leftovers.items():
                for cleanup in objects.values():
                    report.add_object(MisalignedObject(
                        f"/{cleanup['target']}", element_id, is_configured=True, is_undesired=True
                    ))

            if self.approvals is not None:
                report = self.approvals.resolve_audit(report)

        except DeviceUnavailableError as e:
            logger.warning(f"Audit of {target} incomplete: {e}")
            report.error = str(e)
        except IntentError as e:
            logger.error(f"Audit of {target} failed: {e}")
            report.error = str(e)

        logger.info(f"Audit of {target}: {summarize_audit(report)}")
        return report

    async def _audit_config(
        self,
        handler: IntentHandler,
        element_id: str,
        config: dict[str, Any],
        report: AuditReport,
        list_keys: ListKeyCache,
    ) -> None:
        path = config["target"]
        try:
            response = await self._query(element_id, f"{path}?content=config")
        except NotFoundError:
            report.add_object(MisalignedObject(f"/{path}", element_id, is_configured=True))
            return

        actual = unwrap(response)
        intended = unwrap(copy.deepcopy(config["value"]))
        handler.pre_audit_hook(element_id, path, actual, intended)
        await compare_config(
            element_id,
            path,
            actual,
            intended,
            config.get("operation", "replace"),
            config.get("ignore-children"),
            report,
            list_keys,
        )

    async def _audit_health(
        self,
        element_id: str,
        path: str,
        expected: dict[str, Any],
        report: AuditReport,
    ) -> None:
        try:
            response = await self._query(element_id, path)
        except NotFoundError:
            report.add_object(MisalignedObject(f"/{path}", element_id, is_configured=False))
            return
        compare_state(element_id, unwrap(response), expected, report, path)

    @timed("get_state")
    async def get_state(self, intent: Intent) -> Optional[dict[str, Any]]:
        """
        Read-only state of an intent.

        Returns:
            ``{"state": {...}, "indicators": {name: {element_id: value}}}``,
            or None for deleted intents and when nothing could be collected
        """
        if intent.network_state == NetworkState.DELETED:
            return None

        target = intent.target
        args = (intent.intent_type, intent.intent_type_version, target, intent.config)
        indicators: dict[str, dict[str, Any]] = {}

        try:
            handler = self.handler_for(intent.intent_type)
            global_params = handler.get_global_parameters(*args)

            for site in self._sites(handler, intent):
                element_id = site["ne-id"]
                objects = self._site_objects(handler, intent, global_params, site, "state")
                for obj in objects.values():
                    for uri, wanted in (obj.get("indicators") or {}).items():
                        try:
                            response = unwrap(await self._query(element_id, uri))
                        except (NotFoundError, DeviceUnavailableError) as e:
                            logger.warning(f"Indicators at {uri} on {element_id} unavailable: {e}")
                            continue
                        for name, indicator in wanted.items():
                            value = lookup(response, indicator.get("path"))
                            if value is not None:
                                indicators.setdefault(name, {})[element_id] = value

            state = handler.get_state(*args, intent.topology)
        except IntentError as e:
            logger.warning(f"State of {target} unavailable: {e}")
            return None

        if not indicators and not state:
            logger.info(f"Neither indicators nor state collected for {target}")
            return None

        logger.info(f"Collected state of {target}: state={state} indicators={indicators}")
        return {"state": state, "indicators": indicators}

    @timed("discover")
    async def discover(self, intent: Intent) -> dict[str, Any]:
        """Reconstruct the intent config from the network (brownfield)."""
        handler = self.handler_for(intent.intent_type)
        return await handler.discover(intent.target, intent.config, self.devices, self.inventory)

    async def targeted_devices(self, intent: Intent) -> list[str]:
        """Element ids the intent deploys to."""
        handler = self.handler_for(intent.intent_type)
        return handler.get_sites(intent.target, intent.config)
