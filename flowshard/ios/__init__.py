"""
iOS integration module for Flowshard
"""

from .controller import LaunchSpec, LocalIOSDeviceController
from .errors import DeviceControllerError

__all__ = [
    "LocalIOSDeviceController",
    "LaunchSpec",
    "DeviceControllerError",
]
