"""Host port allocation for container port mappings.

Ports come from a fixed window and are tracked in-process, keyed by owner
(the container name).  Each pick starts at a random offset and walks the
window linearly, skipping ports another owner holds, ports already picked for
the same request and, when probing, ports the host refuses to bind.
Reservations are ephemeral and empty on restart.
"""

from __future__ import annotations

import random
import socket
from collections.abc import Sequence

from loguru import logger

from constellation.bridge.errors import PortAllocationFailed
from constellation.bridge.models.container import PortMapping


def port_is_free(port: int, host: str = "0.0.0.0") -> bool:  # noqa: S104
    """Return True if a TCP socket can be bound to *port* right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortAllocator:
    def __init__(
        self,
        start: int = 5000,
        size: int = 1000,
        *,
        probe: bool = True,
        max_probes: int = 64,
        rng: random.Random | None = None,
    ) -> None:
        if size < 1:
            msg = "Port window size must be positive"
            raise ValueError(msg)
        self.start = start
        self.size = size
        self.probe = probe
        self.max_probes = max_probes
        self._rng = rng or random.Random()  # noqa: S311
        self._owners: dict[str, list[int]] = {}

    @property
    def reserved(self) -> frozenset[int]:
        """Snapshot of every port currently held by any owner."""
        return frozenset(p for ports in self._owners.values() for p in ports)

    def owned_by(self, owner: str) -> list[int]:
        return list(self._owners.get(owner, []))

    def allocate(self, owner: str, internal_ports: Sequence[int]) -> list[PortMapping]:
        """Reserve one external port per entry of *internal_ports* for *owner*.

        On success the new ports replace whatever *owner* held before; the old
        ports may be picked again.  Raises ``PortAllocationFailed`` if the
        window has no room, and *owner* keeps its previous reservation.
        """
        own = set(self._owners.get(owner, []))
        taken = self.reserved - own
        picked: list[int] = []
        for _ in internal_ports:
            picked.append(self._pick(taken, picked))

        self.release(owner)
        if picked:
            self._owners[owner] = picked
            logger.debug("Reserved ports {} for {}", picked, owner)
        return [
            PortMapping(internal=internal, external=external)
            for internal, external in zip(internal_ports, picked, strict=True)
        ]

    def transfer(self, source: str, target: str) -> list[int]:
        """Hand *source*'s reservation to *target*, replacing what *target* held."""
        ports = self._owners.pop(source, [])
        self.release(target)
        if ports:
            self._owners[target] = ports
            logger.debug("Moved ports {} from {} to {}", ports, source, target)
        return ports

    def _pick(self, taken: frozenset[int], picked: list[int]) -> int:
        offset = self._rng.randrange(self.size)
        probes = 0
        for step in range(self.size):
            candidate = self.start + (offset + step) % self.size
            if candidate in taken or candidate in picked:
                continue
            if self.probe:
                if probes >= self.max_probes:
                    break
                probes += 1
                if not port_is_free(candidate):
                    continue
            return candidate
        msg = f"No free port in {self.start}-{self.start + self.size - 1}"
        raise PortAllocationFailed(msg)

    def release(self, owner: str) -> list[int]:
        """Drop *owner*'s reservation and return the freed ports."""
        ports = self._owners.pop(owner, [])
        if ports:
            logger.debug("Released ports {} from {}", ports, owner)
        return ports
