"""Resource pool declarations loaded from YAML configuration."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass
class PoolDeclaration:
    """One pool entry of ``pools.yaml``."""
    name: str
    scope: str
    kind: str
    space: Any
    description: str = ""
    tag: Optional[str] = None


def find_pools_file() -> Optional[str]:
    """Find the pools.yaml config file. Pools are optional, so None if absent."""
    search_paths = [
        Path.cwd() / "configs" / "pools.yaml",
        Path.cwd() / "pools.yaml",
        Path.home() / ".config" / "netintent" / "pools.yaml",
        Path("/etc/netintent/pools.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return str(path)
    return None


def load_pool_declarations(config_path: str) -> list[PoolDeclaration]:
    """
    Load pool declarations.

    ```yaml
    defaults:
      scope: global
    pools:
      - name: ip-pool
        kind: subnet
        space: 192.168.192.0/18
        tag: network-link
      - name: service-identifiers
        kind: numeric
        space: [1, 65535]
    ```

    Raises:
        ValidationError: If an entry misses a required field
    """
    with open(config_path) as f:
        config = yaml.safe_load(f) or {}

    defaults = config.get("defaults", {})
    declarations = []

    for index, entry in enumerate(config.get("pools", [])):
        entry = {**defaults, **entry}
        missing = [k for k in ("name", "scope", "kind", "space") if k not in entry]
        if missing:
            raise ValidationError(
                f"Pool entry {index} in {config_path} misses {', '.join(missing)}",
                {f"pools[{index}]": f"missing {', '.join(missing)}"},
            )

        declarations.append(PoolDeclaration(
            name=entry["name"],
            scope=entry["scope"],
            kind=entry["kind"],
            space=entry["space"],
            description=entry.get("description", ""),
            tag=entry.get("tag"),
        ))

    logger.info(f"Loaded {len(declarations)} pool declarations from {config_path}")
    return declarations
