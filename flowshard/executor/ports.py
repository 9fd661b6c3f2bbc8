"""
Driver Port Allocation.

Hands out an exclusive driver host port to every concurrently running shard.
"""

import random
import threading
from typing import Optional, Set

from loguru import logger

from flowshard.executor.errors import PortAllocationError
from flowshard.executor.types import DEFAULT_DRIVER_PORT, PortRange


class PortClaimSet:
    """
    Set of ports claimed during one orchestrator invocation.

    Shard tasks share one instance; ``claim`` is an atomic claim-if-absent
    so no two tasks ever observe the same port as free. Ports are never
    released, the set is discarded with the run.
    """

    def __init__(self) -> None:
        self._claimed: Set[int] = set()
        self._lock = threading.Lock()

    def claim(self, port: int) -> bool:
        """
        Claim a port if nobody holds it yet.

        Returns:
            True if the caller now owns the port, False if it was taken.
        """
        with self._lock:
            if port in self._claimed:
                return False
            self._claimed.add(port)
            return True

    def __contains__(self, port: int) -> bool:
        with self._lock:
            return port in self._claimed

    def __len__(self) -> int:
        with self._lock:
            return len(self._claimed)


class PortAllocator:
    """
    Allocates driver host ports for shards.

    - a pinned port is returned as is, for every shard
    - a single shard always gets the default port
    - several shards draw from a shuffled range through the claim set
    """

    def __init__(
        self,
        port_range: Optional[PortRange] = None,
        claims: Optional[PortClaimSet] = None,
        rng: Optional[random.Random] = None,
        default_port: int = DEFAULT_DRIVER_PORT,
    ) -> None:
        self.port_range = port_range or PortRange()
        self.claims = claims if claims is not None else PortClaimSet()
        self.default_port = default_port
        self._rng = rng or random.Random()

    def acquire(self, effective_shards: int, pinned_port: Optional[int] = None) -> int:
        """
        Pick a port for one shard.

        Args:
            effective_shards: Number of shards in the run.
            pinned_port: User configured port, overrides everything.

        Returns:
            The port this shard owns for its lifetime.

        Raises:
            PortAllocationError: If every port in the range is claimed.
        """
        if pinned_port is not None:
            return pinned_port

        if effective_shards == 1:
            return self.default_port

        candidates = self.port_range.ports()
        self._rng.shuffle(candidates)
        for port in candidates:
            if self.claims.claim(port):
                logger.debug(f"Claimed driver port {port}")
                return port

        raise PortAllocationError(self.port_range.low, self.port_range.high)
