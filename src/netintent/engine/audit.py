"""Audit comparison of intended against actual device data.

Config is compared at object-presence and attribute granularity. YANG
lists are matched entry by entry using the list keys reported by the
device access; lists without known keys are compared as whole values.
Health expectations are checked against operational state.
"""
import ipaddress
import json
import logging
import re
from typing import Any, Optional
from urllib.parse import quote

from ..devices.base import DeviceAccess
from ..errors import TemplateError
from .schema import AuditReport, MisalignedAttribute, MisalignedObject

logger = logging.getLogger(__name__)

EMPTY_VALUES = ("{}", "[]", "[null]")

LIST_INSTANCE = re.compile(r"=[^/]*")


class ListKeyCache:
    """Caches list key names per element and schema path."""

    def __init__(self, devices: DeviceAccess):
        self.devices = devices
        self._keys: dict[tuple[str, str], list[str]] = {}

    async def get(self, element_id: str, list_path: str) -> list[str]:
        # key names depend on the schema node, not on the list instance
        schema_path = LIST_INSTANCE.sub("", list_path)
        cache_key = (element_id, schema_path)
        if cache_key not in self._keys:
            self._keys[cache_key] = await self.devices.list_keys(element_id, schema_path)
        return self._keys[cache_key]


def unwrap(data: Any) -> dict[str, Any]:
    """Strip the top-level envelope of device data.

    YANG list entries are encoded as single-entry lists, so
    ``{"nokia-conf:port": [{"port-id": "1/1/1"}]}`` becomes
    ``{"port-id": "1/1/1"}``. The result is the same object as inside
    ``data`` when there is one.
    """
    if not isinstance(data, dict) or not data:
        return {}
    value = next(iter(data.values()))
    if isinstance(value, list):
        value = value[0] if value else {}
    return value if isinstance(value, dict) else {}


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return _compact(value)
    return str(value)


def _kind(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "container"
    return "null"


def _same_address(intended: Any, actual: Any) -> bool:
    """True if both values denote the same IPv6 address or prefix."""
    if not isinstance(intended, str) or not isinstance(actual, str) or ":" not in intended:
        return False
    try:
        return ipaddress.ip_interface(intended) == ipaddress.ip_interface(actual)
    except ValueError:
        return False


def _is_entry_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0 and isinstance(value[0], dict)


def _group_by_keys(entries: list, keys: list[str]) -> dict[str, Any]:
    return {
        ",".join(quote(str(entry.get(k)), safe="") for k in keys): entry
        for entry in entries
    }


async def compare_config(
    element_id: str,
    base_path: str,
    actual: dict[str, Any],
    intended: dict[str, Any],
    mode: str,
    ignore: Optional[list[str]],
    report: AuditReport,
    list_keys: ListKeyCache,
    path: str = "",
) -> None:
    """Compare one configuration subtree and record differences in ``report``.

    Args:
        element_id: Element the data was read from
        base_path: Device model path of the object under audit
        actual: Configuration read from the device
        intended: Configuration rendered for the device
        mode: Edit operation of the object. With ``merge`` leftovers on the
            device are tolerated.
        ignore: Relative paths whose leftovers are pre-approved
        report: Audit report to add findings to
        list_keys: Key lookup for YANG lists
        path: Relative path of this subtree (used while recursing)
    """
    ignore = ignore or []

    for key, want in intended.items():
        where = f"/{base_path}/{path}{key}"

        if key not in actual:
            if isinstance(want, (dict, list)):
                if _compact(want) in EMPTY_VALUES:
                    report.add_attribute(MisalignedAttribute(where, _compact(want), None, element_id))
                else:
                    report.add_object(MisalignedObject(where, element_id))
            else:
                report.add_attribute(MisalignedAttribute(where, _text(want), None, element_id))
            continue

        have = actual[key]

        # numbers and strings are encoded interchangeably for union types
        if isinstance(want, str) and _kind(have) == "number":
            have = str(have)
        elif _kind(want) == "number" and isinstance(have, str):
            want = str(want)

        if _kind(want) != _kind(have):
            report.add_attribute(MisalignedAttribute(
                where, f"type {_kind(want)}", f"type {_kind(have)}", element_id
            ))
        elif isinstance(want, dict):
            await compare_config(
                element_id, base_path, have, want, mode, ignore, report, list_keys, f"{path}{key}/"
            )
        elif isinstance(want, list):
            keys = []
            if _is_entry_list(want) or _is_entry_list(have):
                keys = await list_keys.get(element_id, f"{base_path}/{path}{key}")

            if keys:
                await compare_config(
                    element_id, base_path,
                    _group_by_keys(have, keys), _group_by_keys(want, keys),
                    mode, ignore, report, list_keys, f"{path}{key}=",
                )
            elif _compact(want) != _compact(have):
                report.add_attribute(MisalignedAttribute(where, _compact(want), _compact(have), element_id))
        elif want != have:
            if _same_address(want, have):
                logger.debug(f"Matching IPv6 addresses: {want} == {have}")
            else:
                report.add_attribute(MisalignedAttribute(where, _text(want), _text(have), element_id))

    if mode == "merge":
        return

    for key, have in actual.items():
        if key in intended:
            continue

        relative = f"{path}{key}"
        if any(relative.startswith(prefix) for prefix in ignore):
            continue

        where = f"/{base_path}/{relative}"
        if isinstance(have, (dict, list)):
            if _compact(have) in EMPTY_VALUES:
                report.add_attribute(MisalignedAttribute(where, None, _compact(have), element_id))
            else:
                report.add_object(MisalignedObject(where, element_id, is_undesired=True))
        else:
            report.add_attribute(MisalignedAttribute(where, None, _text(have), element_id))


def lookup(data: Any, path: Optional[str]) -> Any:
    """Resolve a slash-separated path in nested device data.

    Lists along the way resolve to their first entry. Returns None if any
    segment is missing.
    """
    if not path:
        return data
    for segment in path.strip("/").split("/"):
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict) or segment not in data:
            return None
        data = data[segment]
    return data


def _check(kind: str, actual: str, expected: str, path: str) -> bool:
    if kind in ("equals", "matches"):
        return actual == expected
    if kind in ("contains", "includes"):
        return expected in actual
    if kind == "startsWith":
        return actual.startswith(expected)
    if kind == "endsWith":
        return actual.endswith(expected)
    if kind == "regex":
        return re.search(expected, actual) is not None
    raise TemplateError(f"Unsupported match-type '{kind}' for path '{path}', value '{expected}'")


def compare_state(
    element_id: str,
    actual: dict[str, Any],
    intended: dict[str, Any],
    report: AuditReport,
    query_path: str,
) -> None:
    """Check health expectations against operational state.

    ``intended`` maps a name to either a plain expected value of the
    attribute with that name, or to ``{"path": ..., <check>: <value>, ...}``
    where each check is one of equals, matches, contains, includes,
    startsWith, endsWith or regex.
    """
    for name, expectation in intended.items():
        where = f"/{query_path}/{name}"

        if isinstance(expectation, dict):
            value = lookup(actual, expectation.get("path"))
            for kind, expected in expectation.items():
                if kind == "path":
                    continue
                if value is None:
                    report.add_attribute(MisalignedAttribute(where, _text(expected), None, element_id))
                elif not _check(kind, _text(value), _text(expected), expectation.get("path", "")):
                    report.add_attribute(MisalignedAttribute(where, _text(expected), _text(value), element_id))
        elif name in actual:
            if actual[name] != expectation:
                report.add_attribute(MisalignedAttribute(
                    where, _text(expectation), _text(actual[name]), element_id
                ))
        else:
            report.add_attribute(MisalignedAttribute(where, _text(expectation), None, element_id))


def summarize_audit(report: AuditReport) -> str:
    """One-line human readable audit outcome."""
    if report.error:
        return f"audit failed: {report.error}"
    if report.aligned:
        return "aligned"

    missing = sum(1 for o in report.misaligned_objects if not o.is_undesired)
    undesired = len(report.misaligned_objects) - missing
    parts = []
    if missing:
        parts.append(f"{missing} missing object(s)")
    if undesired:
        parts.append(f"{undesired} undesired object(s)")
    if report.misaligned_attributes:
        parts.append(f"{len(report.misaligned_attributes)} misaligned attribute(s)")
    return "misaligned: " + ", ".join(parts)
