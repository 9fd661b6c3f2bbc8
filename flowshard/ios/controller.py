"""
Local iOS device controller using ``xcrun devicectl``
"""

import asyncio
import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flowshard.executor.types import DeviceInfo, DeviceType, Platform
from .errors import DeviceControllerError

DRIVER_BUNDLE_ID = "dev.mobile.maestro-driver-iosUITests.xctrunner"
COMMAND_TIMEOUT_S = 10
LOG_DIR_DATE_FORMAT = "%Y-%m-%d_%H%M%S"

INSTALL_HINTS = (
    "Make sure the device is unlocked, trusts this computer and has "
    "Developer Mode enabled."
)


class _DevicectlModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ProcessInfo(_DevicectlModel):
    process_identifier: Optional[int] = Field(default=None, alias="processIdentifier")
    bundle_identifier: Optional[str] = Field(default=None, alias="bundleIdentifier")


class ProcessResult(_DevicectlModel):
    running_processes: Optional[List[ProcessInfo]] = Field(default=None, alias="runningProcesses")


class ProcessListResponse(_DevicectlModel):
    result: Optional[ProcessResult] = None

    def find_pid(self, bundle_id: str) -> Optional[int]:
        if self.result is None or not self.result.running_processes:
            return None
        for process in self.result.running_processes:
            if process.bundle_identifier == bundle_id:
                return process.process_identifier
        return None


class HardwareProperties(_DevicectlModel):
    udid: Optional[str] = None
    platform: Optional[str] = None
    product_type: Optional[str] = Field(default=None, alias="productType")


class DeviceProperties(_DevicectlModel):
    name: Optional[str] = None
    os_version_number: Optional[str] = Field(default=None, alias="osVersionNumber")


class DevicectlDevice(_DevicectlModel):
    identifier: str
    hardware_properties: HardwareProperties = Field(
        default_factory=HardwareProperties, alias="hardwareProperties"
    )
    device_properties: DeviceProperties = Field(
        default_factory=DeviceProperties, alias="deviceProperties"
    )


class DeviceListResult(_DevicectlModel):
    devices: List[DevicectlDevice] = Field(default_factory=list)


class DeviceListResponse(_DevicectlModel):
    result: Optional[DeviceListResult] = None


@dataclass
class LaunchSpec:
    """What to launch on the device, and where its output goes."""
    bundle_id: str = DRIVER_BUNDLE_ID
    port: int = 7001
    env: Dict[str, str] = field(default_factory=dict)
    log_file: Optional[Path] = None


class LocalIOSDeviceController:
    """
    Controls physical iOS devices through ``xcrun devicectl``.

    Every blocking command is bounded by ``command_timeout_s``; a command
    that overruns is killed and the timeout logged.
    """

    def __init__(
        self,
        xcrun_path: str = "xcrun",
        command_timeout_s: float = COMMAND_TIMEOUT_S,
        log_dir: Optional[Path] = None,
    ):
        """Initialize the controller

        Args:
            xcrun_path: Path to the xcrun executable
            command_timeout_s: Timeout for each devicectl invocation
            log_dir: Directory for runner logs, defaults to the temp directory
        """
        self.xcrun_path = xcrun_path
        self.command_timeout_s = command_timeout_s
        self.log_dir = log_dir or Path(tempfile.gettempdir()) / "flowshard"
        self._date = datetime.now().strftime(LOG_DIR_DATE_FORMAT)

    def _devicectl(self, *args: str) -> List[str]:
        return [self.xcrun_path, "devicectl", *args]

    async def install(self, device_id: str, app_path: Path) -> None:
        """Install an app bundle on the device

        Raises:
            DeviceControllerError: If devicectl exits with a non-zero code
        """
        command = self._devicectl(
            "device", "install", "app",
            "--device", device_id,
            str(Path(app_path).absolute()),
        )
        logger.info(f"Installing {app_path} on device {device_id}")

        returncode, _, stderr = await self._run(command)
        if returncode is None:
            return
        if returncode != 0:
            raise DeviceControllerError(command, f"{stderr.strip()}\n{INSTALL_HINTS}")

    async def launch(self, device_id: str, spec: LaunchSpec) -> asyncio.subprocess.Process:
        """Launch an app without waiting for it to exit

        Output of devicectl goes to ``spec.log_file``.

        Returns:
            The launched devicectl process
        """
        log_file = spec.log_file or self.log_dir / f"xctest_runner_{self._date}.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)

        env = dict(os.environ)
        env["SIMCTL_CHILD_PORT"] = str(spec.port)
        for key, value in spec.env.items():
            env[f"SIMCTL_CHILD_{key}"] = value

        command = self._devicectl(
            "device", "process", "launch",
            "--terminate-existing",
            "--device", device_id,
            spec.bundle_id,
        )
        logger.info(f"Launching {spec.bundle_id} on device {device_id} using port {spec.port}")

        with open(log_file, "ab") as output:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=output,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
        return process

    async def terminate(self, device_id: str, bundle_id: str) -> None:
        """Terminate a running app, doing nothing if it is not running"""
        logger.info(f"[Start] Terminating app {bundle_id} on device {device_id}")
        pid = await self.get_process_id(device_id, bundle_id)
        if pid is None:
            logger.info(f"App {bundle_id} is not running, nothing to terminate")
            return

        command = self._devicectl(
            "device", "process", "terminate",
            "--device", device_id,
            "--pid", str(pid),
        )
        try:
            returncode, _, stderr = await self._run(command)
        except OSError as e:
            logger.warning(f"Failed to terminate app {bundle_id}: {e}")
            return

        if returncode is None:
            logger.warning("Timeout waiting for terminate command")
        elif returncode != 0:
            logger.warning(f"Failed to terminate app {bundle_id}: {stderr.strip()}")
        logger.info(f"[Done] Terminating app {bundle_id}")

    async def get_process_id(self, device_id: str, bundle_id: str) -> Optional[int]:
        """Find the pid of a running app from the device process list"""
        with tempfile.NamedTemporaryFile(
            prefix="devicectl_processes", suffix=".json", delete=False
        ) as tmp:
            output = Path(tmp.name)

        try:
            returncode, _, _ = await self._run(self._devicectl(
                "device", "info", "processes",
                "--device", device_id,
                "--json-output", str(output),
            ))
            if returncode is None:
                logger.warning(f"Timeout waiting for process list from device {device_id}")
                return None

            response = ProcessListResponse.model_validate_json(output.read_text())
            return response.find_pid(bundle_id)
        except (OSError, ValidationError) as e:
            logger.warning(f"Failed to get process ID for {bundle_id}: {e}")
            return None
        finally:
            output.unlink(missing_ok=True)

    async def list_connected(self) -> List[DeviceInfo]:
        """List physical devices known to devicectl; failures give an empty list"""
        with tempfile.NamedTemporaryFile(
            prefix="devicectl_devices", suffix=".json", delete=False
        ) as tmp:
            output = Path(tmp.name)

        try:
            returncode, _, stderr = await self._run(
                self._devicectl("list", "devices", "--json-output", str(output))
            )
            if returncode != 0:
                logger.warning(f"Failed to list devices: {stderr.strip()}")
                return []
            response = DeviceListResponse.model_validate_json(output.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(f"Failed to list devices: {e}")
            return []
        finally:
            output.unlink(missing_ok=True)

        if response.result is None:
            return []
        return [self._to_device_info(d) for d in response.result.devices]

    @staticmethod
    def _to_device_info(device: DevicectlDevice) -> DeviceInfo:
        udid = device.hardware_properties.udid or device.identifier
        name = device.device_properties.name or udid
        metadata = {"identifier": device.identifier}
        if device.hardware_properties.product_type:
            metadata["product_type"] = device.hardware_properties.product_type
        if device.device_properties.os_version_number:
            metadata["os_version"] = device.device_properties.os_version_number
        return DeviceInfo(
            device_id=udid,
            platform=Platform.IOS,
            device_type=DeviceType.REAL,
            description=name,
            metadata=metadata,
        )

    async def _run(self, command: Sequence[str]) -> Tuple[Optional[int], str, str]:
        """Run a command to completion within the timeout

        Returns:
            (returncode, stdout, stderr); returncode is None on timeout
        """
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self.command_timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(f"{' '.join(command)} timed out after {self.command_timeout_s}s")
            process.kill()
            await process.wait()
            return None, "", ""
        return process.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")
