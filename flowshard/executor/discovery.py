"""
Device Discovery Module.

Lists connected Android devices, iOS simulators and devices, and the
synthetic browser device used for web flows.
"""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from loguru import logger

from flowshard.executor.types import (
    WEB_DEVICE_ID,
    DeviceInfo,
    DeviceType,
    Platform,
)


@dataclass
class DiscoverySummary:
    """Summary of device discovery results."""
    android_devices: List[DeviceInfo]
    ios_devices: List[DeviceInfo]
    web_devices: List[DeviceInfo]
    discovery_time_ms: int
    errors: List[str] = field(default_factory=list)

    @property
    def devices(self) -> List[DeviceInfo]:
        """All devices, Android first, then iOS, then web."""
        return self.android_devices + self.ios_devices + self.web_devices

    @property
    def by_platform(self) -> Dict[Platform, List[DeviceInfo]]:
        """Get devices grouped by platform."""
        return {
            Platform.ANDROID: self.android_devices,
            Platform.IOS: self.ios_devices,
            Platform.WEB: self.web_devices,
        }


class DeviceDiscovery:
    """
    Device discovery service.

    Supports:
    - Android emulators and devices via ADB
    - booted iOS simulators via ``xcrun simctl``
    - physical iOS devices via pymobiledevice3
    - the ``chromium`` browser device for web flows

    A platform whose tooling is missing or failing contributes no devices;
    the failure is logged and recorded in the summary.
    """

    def __init__(
        self,
        adb_path: str = "adb",
        xcrun_path: str = "xcrun",
        command_timeout_s: float = 10.0,
    ) -> None:
        self._adb_path = adb_path
        self._xcrun_path = xcrun_path
        self._command_timeout_s = command_timeout_s

    async def list_connected_devices(self, include_web: bool = False) -> List[DeviceInfo]:
        """Return every connected device, in discovery order."""
        summary = await self.discover_all(include_web=include_web)
        return summary.devices

    async def discover_all(self, include_web: bool = False) -> DiscoverySummary:
        """
        Discover all connected devices across all platforms.

        Android and iOS are scanned concurrently.
        """
        start_time = datetime.now()
        errors: List[str] = []

        android_results, ios_results = await asyncio.gather(
            self.discover_android_devices(),
            self.discover_ios_devices(),
            return_exceptions=True,
        )

        android_devices: List[DeviceInfo] = []
        if isinstance(android_results, Exception):
            errors.append(f"Android discovery failed: {android_results}")
            logger.error(f"Android discovery failed: {android_results}")
        else:
            android_devices = android_results

        ios_devices: List[DeviceInfo] = []
        if isinstance(ios_results, Exception):
            errors.append(f"iOS discovery failed: {ios_results}")
            logger.error(f"iOS discovery failed: {ios_results}")
        else:
            ios_devices = ios_results

        web_devices: List[DeviceInfo] = []
        if include_web:
            web_devices.append(
                DeviceInfo(
                    device_id=WEB_DEVICE_ID,
                    platform=Platform.WEB,
                    device_type=DeviceType.BROWSER,
                    description="Chromium Desktop Browser",
                )
            )

        duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        logger.info(
            f"Discovery completed: {len(android_devices)} Android, "
            f"{len(ios_devices)} iOS, {len(web_devices)} web devices in {duration_ms}ms"
        )

        return DiscoverySummary(
            android_devices=android_devices,
            ios_devices=ios_devices,
            web_devices=web_devices,
            discovery_time_ms=duration_ms,
            errors=errors,
        )

    async def discover_android_devices(self) -> List[DeviceInfo]:
        """Discover online Android devices using ``adb devices``."""
        output = await self._run(self._adb_path, "devices")
        if output is None:
            return []
        return self.parse_adb_devices(output)

    async def discover_ios_devices(self) -> List[DeviceInfo]:
        """Discover booted simulators and connected physical iOS devices."""
        simulators = await self._discover_ios_simulators()
        physical = await self._discover_ios_physical()
        known = {d.device_id for d in simulators}
        return simulators + [d for d in physical if d.device_id not in known]

    async def _discover_ios_simulators(self) -> List[DeviceInfo]:
        output = await self._run(
            self._xcrun_path, "simctl", "list", "devices", "booted", "-j"
        )
        if output is None:
            return []
        return self.parse_simctl_devices(output)

    async def _discover_ios_physical(self) -> List[DeviceInfo]:
        """Get connected iOS device UDIDs via pymobiledevice3."""
        try:
            from pymobiledevice3.usbmux import list_devices

            loop = asyncio.get_running_loop()
            devices = await loop.run_in_executor(None, list_devices)
        except Exception as e:
            logger.warning(f"Failed to list physical iOS devices: {e}")
            return []

        return [
            DeviceInfo(
                device_id=d.serial,
                platform=Platform.IOS,
                device_type=DeviceType.REAL,
                description=f"iOS device {d.serial}",
                metadata={"discovered_at": datetime.now().isoformat()},
            )
            for d in devices
        ]

    async def _run(self, *command: str) -> Optional[str]:
        """Run a listing command, returning stdout or None on failure."""
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.debug(f"{command[0]} not found, skipping")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._command_timeout_s
            )
        except asyncio.TimeoutError:
            logger.error(f"{' '.join(command)} timed out")
            process.kill()
            await process.wait()
            return None

        if process.returncode != 0:
            logger.warning(f"{' '.join(command)} failed: {stderr.decode().strip()}")
            return None
        return stdout.decode()

    @staticmethod
    def parse_adb_devices(output: str) -> List[DeviceInfo]:
        """Parse ``adb devices`` output, keeping devices in the ``device`` state."""
        devices: List[DeviceInfo] = []
        for line in output.strip().split("\n")[1:]:  # Skip header
            if "\t" not in line:
                continue
            device_id, _, status = line.partition("\t")
            device_id = device_id.strip()
            if not device_id or status.strip() != "device":
                continue
            device_type = (
                DeviceType.EMULATOR if device_id.startswith("emulator-") else DeviceType.REAL
            )
            devices.append(
                DeviceInfo(
                    device_id=device_id,
                    platform=Platform.ANDROID,
                    device_type=device_type,
                    description=f"Android {device_type.value} {device_id}",
                )
            )
        return devices

    @staticmethod
    def parse_simctl_devices(output: str) -> List[DeviceInfo]:
        """Parse ``simctl list devices booted -j`` output."""
        try:
            payload = json.loads(output)
        except ValueError as e:
            logger.warning(f"Unreadable simctl output: {e}")
            return []

        devices: List[DeviceInfo] = []
        for runtime, entries in payload.get("devices", {}).items():
            for entry in entries:
                if entry.get("state") != "Booted":
                    continue
                devices.append(
                    DeviceInfo(
                        device_id=entry["udid"],
                        platform=Platform.IOS,
                        device_type=DeviceType.SIMULATOR,
                        description=entry.get("name", ""),
                        metadata={"runtime": runtime},
                    )
                )
        return devices
