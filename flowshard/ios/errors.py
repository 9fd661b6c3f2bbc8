"""
iOS-specific exception classes
"""

from typing import Sequence

from flowshard.executor.errors import FlowshardError


class DeviceControllerError(FlowshardError):
    """A devicectl command failed"""

    def __init__(self, command: Sequence[str], message: str):
        self.command = list(command)
        self.message = message
        super().__init__(f"Command failed: {' '.join(self.command)}\n{message}")
