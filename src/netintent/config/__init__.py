"""Configuration: device inventory and resource pool declarations."""
from .inventory import DeviceInfo, DeviceInventory
from .pools import PoolDeclaration, find_pools_file, load_pool_declarations

__all__ = [
    "DeviceInfo",
    "DeviceInventory",
    "PoolDeclaration",
    "find_pools_file",
    "load_pool_declarations",
]
