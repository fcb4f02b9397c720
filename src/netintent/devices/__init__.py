"""Device access capability consumed by the engine."""
from .base import DeviceAccess

__all__ = ["DeviceAccess"]
