"""Parsing of intent targets.

Targets follow one of two conventions:
    <scope>#<sub-object>#<correlation-id>       e.g. "iplink#global#link-42"
    ...ne-id='<value>'...#<sub-object>#<id>       e.g. "/ne[ne-id='10.0.0.1']#lag#lag-7"
"""
import re

from ..errors import ValidationError

TARGET_SEPARATOR = "#"
ELEMENT_ID_PATTERN = re.compile(r"ne-id='([^']+)'")
NUMBER_PATTERN = re.compile(r"\d+")


def split_target(target: str) -> list[str]:
    if not isinstance(target, str) or not target:
        raise ValidationError("Intent target must be a non-empty string", {"target": "empty"})
    return target.split(TARGET_SEPARATOR)


def template_of(target: str) -> str:
    """First segment of a delimited target."""
    return split_target(target)[0]


def correlation_id(target: str) -> str:
    """
    Correlation id (third segment) of a delimited target.

    Targets without any delimiter are their own correlation id.

    Raises:
        ValidationError: If the target is delimited but has fewer than 3 segments
    """
    segments = split_target(target)
    if len(segments) == 1:
        return target
    if len(segments) < 3 or not segments[2]:
        raise ValidationError(
            f"Invalid target '{target}' (expected <scope>#<object>#<id>)",
            {"target": "expected <scope>#<object>#<id>"},
        )
    return segments[2]


def element_id_of(target: str) -> str:
    """
    Element id embedded as ``ne-id='<value>'``.

    Raises:
        ValidationError: If the target does not contain an ne-id
    """
    match = ELEMENT_ID_PATTERN.search(target or "")
    if not match:
        raise ValidationError(
            f"Invalid target '{target}' (object identifier must contain ne-id)",
            {"target": "must contain ne-id='<value>'"},
        )
    return match.group(1)


def first_number(value: str) -> int:
    """First run of digits in ``value``, e.g. 42 for 'link-42'."""
    match = NUMBER_PATTERN.search(value or "")
    if not match:
        raise ValidationError(
            f"'{value}' contains no numeric identifier",
            {"target": f"'{value}' contains no number"},
        )
    return int(match.group(0))
