"""Network element inventory loaded from YAML configuration."""
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class DeviceInfo:
    """Inventory record of one network element."""
    element_id: str
    name: str
    family_type_release: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def family(self) -> str:
        """Family/type segment, e.g. '7750 SR' of '7750 SR:23.10.R2:7750 SR-1'."""
        return (self.family_type_release or "").split(":")[0]

    @property
    def release(self) -> Optional[str]:
        parts = (self.family_type_release or "").split(":")
        return parts[1] if len(parts) > 1 else None


class DeviceInventory:
    """Manages the network element inventory loaded from YAML config.

    ```yaml
    defaults:
      family_type_release: "7750 SR:23.10.R2:7750 SR-1"
    devices:
      10.0.0.1:
        name: pe-paris
      10.0.0.2:
        name: pe-berlin
        family_type_release: "7250 IXR SRLinux:23.10.3:7250 IXR-6e"
    ```
    """

    def __init__(self, config_path: Optional[str] = None, config: Optional[dict] = None):
        if config is not None:
            self.config_path = None
            self._config = config
        else:
            self.config_path = config_path or self._find_config()
            with open(self.config_path) as f:
                self._config = yaml.safe_load(f) or {}
        self._apply_defaults()

    @classmethod
    def from_dict(cls, devices: dict[str, dict], defaults: Optional[dict] = None) -> "DeviceInventory":
        """Build an inventory without a YAML file."""
        return cls(config={"devices": devices, "defaults": defaults or {}})

    def _find_config(self) -> str:
        """Find the devices.yaml config file."""
        search_paths = [
            Path.cwd() / "configs" / "devices.yaml",
            Path.cwd() / "devices.yaml",
            Path.home() / ".config" / "netintent" / "devices.yaml",
            Path("/etc/netintent/devices.yaml"),
        ]

        for path in search_paths:
            if path.exists():
                return str(path)

        raise FileNotFoundError(
            "Could not find devices.yaml. Create one in ./configs/devices.yaml"
        )

    def _apply_defaults(self) -> None:
        devices = self._config.setdefault("devices", {}) or {}
        self._config["devices"] = {str(k): v or {} for k, v in devices.items()}

        defaults = self._config.get("defaults", {}) or {}
        for element_id, device_config in self._config["devices"].items():
            for key, value in defaults.items():
                if key not in device_config:
                    device_config[key] = value
            if "name" not in device_config:
                logger.warning(f"Device {element_id} has no name, using its element id")
                device_config["name"] = element_id

    def get_element_ids(self) -> list[str]:
        """Get all element IDs."""
        return list(self._config["devices"].keys())

    def get_device_config(self, element_id: str) -> dict:
        """Get raw config for a device."""
        devices = self._config["devices"]
        if element_id not in devices:
            raise NotFoundError(f"Unknown device: {element_id}")
        return devices[element_id]

    def get_device_info(self, element_id: str) -> DeviceInfo:
        config = dict(self.get_device_config(element_id))
        return DeviceInfo(
            element_id=element_id,
            name=config.pop("name"),
            family_type_release=config.pop("family_type_release", None),
            extra=config,
        )

    def has_device(self, element_id: str) -> bool:
        return element_id in self._config["devices"]

    def site_names(self) -> dict[str, str]:
        """Mapping element id -> device name, for site parameter derivation."""
        return {
            element_id: config["name"]
            for element_id, config in self._config["devices"].items()
        }
