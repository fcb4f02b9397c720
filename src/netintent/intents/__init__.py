"""Intent handlers for the supported intent types."""
from typing import Optional

from ..resources.admin import ResourceAdmin
from ..templates import TemplateDispatcher
from .base import IntentHandler
from .eline import ELineHandler
from .ip_interface import IpInterfaceHandler
from .iplink import IpLinkHandler
from .linkagg import LinkAggHandler

__all__ = [
    "IntentHandler",
    "ELineHandler",
    "IpInterfaceHandler",
    "IpLinkHandler",
    "LinkAggHandler",
    "INTENT_TYPES",
    "create_handler",
]

# Intent type registry
INTENT_TYPES: dict[str, type[IntentHandler]] = {
    "generic": IntentHandler,
    "iplink": IpLinkHandler,
    "linkagg": LinkAggHandler,
    "eline": ELineHandler,
    "ip-interface": IpInterfaceHandler,
}


def create_handler(
    intent_type: str,
    resources: ResourceAdmin,
    dispatcher: Optional[TemplateDispatcher] = None,
) -> IntentHandler:
    """Factory function to create intent handler instances."""
    if intent_type not in INTENT_TYPES:
        raise ValueError(f"Unknown intent type: {intent_type}")

    handler_class = INTENT_TYPES[intent_type]
    return handler_class(resources, dispatcher)
