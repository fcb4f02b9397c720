"""Template dispatch: device family -> deployment template identifier.

The rules are data, ordered, first match wins. Unrecognized device
families fall back to the default template instead of failing.

Examples for family/type/release descriptors:
    7750 SR:23.10.R2:7750 SR-1
    7250 IXR SRLinux:23.10.3:7250 IXR-6e
    7730 SXR SRLinux:0.0.0:7730 SXR-1d-32D
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal, Optional, Sequence


@dataclass(frozen=True)
class TemplateRule:
    """Maps a device family pattern to a template identifier."""
    pattern: str
    template: str
    # exact: family/type segment equals pattern
    # contains: full descriptor contains pattern
    match: Literal["exact", "contains"] = "exact"

    def matches(self, family: str, descriptor: str) -> bool:
        if self.match == "contains":
            return self.pattern in descriptor
        return family == self.pattern


DEFAULT_TEMPLATE = "mappers/openconfig.j2"

DEFAULT_RULES: tuple[TemplateRule, ...] = (
    TemplateRule("7750 SR", "mappers/sros.j2"),
    TemplateRule("7450 ESS", "mappers/sros.j2"),
    TemplateRule("7950 XRS", "mappers/sros.j2"),
    TemplateRule("7250 IXR", "mappers/sros.j2"),
    TemplateRule("7220 IXR SRLinux", "mappers/srlinux.j2"),
    TemplateRule("7250 IXR SRLinux", "mappers/srlinux.j2"),
    TemplateRule("7730 SXR SRLinux", "mappers/srlinux.j2"),
    TemplateRule("SRLinux", "mappers/srlinux.j2", match="contains"),
    TemplateRule("Ciena", "mappers/saos.j2", match="contains"),
    TemplateRule("IOS-XR", "mappers/iosxr.j2", match="contains"),
    TemplateRule("Juniper", "mappers/junos.j2", match="contains"),
)


class TemplateDispatcher:
    """Pure, total mapping from family/type/release to a template name."""

    def __init__(
        self,
        rules: Sequence[TemplateRule] = DEFAULT_RULES,
        default: str = DEFAULT_TEMPLATE,
    ):
        self.rules = tuple(rules)
        self.default = default

    def get_template_name(self, element_id: str, family_type_release: Optional[str]) -> str:
        """
        Select the template for one site.

        Never raises: anything unrecognized, including None or an empty
        descriptor, yields the default template.
        """
        descriptor = family_type_release if isinstance(family_type_release, str) else ""
        family = descriptor.split(":")[0]

        for rule in self.rules:
            if rule.matches(family, descriptor):
                return rule.template
        return self.default


class TemplateRenderer(ABC):
    """Renders a deployment template into device objects (external)."""

    @abstractmethod
    def has_template(self, template_name: str) -> bool:
        pass

    @abstractmethod
    def render(self, template_name: str, context: dict[str, Any]) -> str:
        """Render ``template_name`` with ``context``.

        The output is JSON text mapping object names to
        ``{"config": {...}, "health": {...}, "indicators": {...}}``.
        """
        pass
