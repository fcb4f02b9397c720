"""Access-facing link aggregation group with its member ports.

Target: ``<ne-object>[ne-id='<element id>']#lag#<lag-id>``
"""
import copy
from typing import Any

from .base import IntentHandler
from .target import correlation_id, element_id_of


class LinkAggHandler(IntentHandler):
    """LAG on a single network element."""

    intent_type = "linkagg"

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
        site["lag-id"] = correlation_id(target)
        return [site]
