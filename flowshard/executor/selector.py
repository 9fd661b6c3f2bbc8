"""
Device Selection.

Resolves the ordered list of device ids bound to shard indices.
"""

from typing import Iterable, List, Optional, Sequence, Union

from loguru import logger

from flowshard.executor.errors import DeviceNotConnectedError
from flowshard.executor.types import WEB_DEVICE_ID, DeviceInfo, ExecutionPlan, Platform


def parse_device_ids(value: Union[str, Iterable[str], None]) -> List[str]:
    """Split a comma separated device list, trimming blanks."""
    if value is None:
        return []
    parts = value.split(",") if isinstance(value, str) else list(value)
    return [p.strip() for p in parts if p and p.strip()]


class DeviceSelector:
    """
    Picks the devices shards run on.

    The returned list lines up with shard indices: shard ``i`` runs on
    ``device_ids[i]``. Bindings are computed once before any shard starts.
    """

    def requested_ids(
        self,
        plan: ExecutionPlan,
        requested_device_ids: Union[str, Iterable[str], None],
    ) -> List[str]:
        """Device ids asked for explicitly, ``chromium`` for web-only plans."""
        if plan.all_web_flows():
            return [WEB_DEVICE_ID]
        return parse_device_ids(requested_device_ids)

    def select(
        self,
        plan: ExecutionPlan,
        requested_device_ids: Union[str, Iterable[str], None],
        platform_filter: Optional[str],
        connected_devices: Sequence[DeviceInfo],
    ) -> List[str]:
        """
        Resolve device ids for a run.

        Args:
            plan: The execution plan.
            requested_device_ids: Explicit ids, as a list or comma separated string.
            platform_filter: Platform name used when no ids were requested.
            connected_devices: Devices currently connected.

        Returns:
            Ordered, de-duplicated device ids.

        Raises:
            DeviceNotConnectedError: If a requested device is not connected.
        """
        available = {d.device_id for d in connected_devices}
        requested = self.requested_ids(plan, requested_device_ids)

        selected: List[str] = []
        for device_id in requested:
            if device_id not in available:
                raise DeviceNotConnectedError(device_id)
            if device_id not in selected:
                selected.append(device_id)

        if selected:
            return selected

        platform = Platform.from_string(platform_filter) if platform_filter else None
        for device in connected_devices:
            if platform is not None and device.platform != platform:
                continue
            if device.device_id not in selected:
                selected.append(device.device_id)

        logger.debug(f"Selected devices: {selected}")
        return selected
