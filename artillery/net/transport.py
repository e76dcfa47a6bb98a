from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger("artillery.net")

DataHandler = Callable[[str, bytes], None]
StateHandler = Callable[[str, bool], None]


class PeerChannel(Protocol):
    """Reliable unicast/broadcast channel between peers of one session."""

    local_peer: str

    def connected_peers(self) -> list[str]: ...

    def send_to(self, peer: str, data: bytes) -> None: ...

    def broadcast(self, data: bytes) -> None: ...


class MeshEndpoint:
    """One peer's view of an InMemoryMesh."""

    def __init__(self, mesh: InMemoryMesh, peer: str):
        self.mesh = mesh
        self.local_peer = peer
        self.on_data: DataHandler | None = None
        self.on_state: StateHandler | None = None

    def connected_peers(self) -> list[str]:
        return [p for p in self.mesh.peers() if p != self.local_peer]

    def send_to(self, peer: str, data: bytes) -> None:
        self.mesh.deliver(self.local_peer, peer, data)

    def broadcast(self, data: bytes) -> None:
        for peer in self.connected_peers():
            self.mesh.deliver(self.local_peer, peer, data)


class InMemoryMesh:
    """Loopback transport connecting endpoints in one process (tests, hot-seat).

    Delivery calls the receiver's `on_data` synchronously; receivers are
    expected to only queue the payload.
    """

    def __init__(self) -> None:
        self._endpoints: dict[str, MeshEndpoint] = {}
        self._lock = threading.Lock()
        self.sent = 0

    def peers(self) -> list[str]:
        with self._lock:
            return list(self._endpoints)

    def join(self, peer: str) -> MeshEndpoint:
        with self._lock:
            if peer in self._endpoints:
                raise ValueError(f"Peer already connected: {peer!r}")
            endpoint = MeshEndpoint(self, peer)
            others = list(self._endpoints.values())
            self._endpoints[peer] = endpoint
        logger.info(f"mesh: {peer} joined (total={len(others) + 1})")
        for other in others:
            if other.on_state is not None:
                other.on_state(peer, True)
        return endpoint

    def disconnect(self, peer: str) -> None:
        with self._lock:
            gone = self._endpoints.pop(peer, None)
            others = list(self._endpoints.values())
        if gone is None:
            return
        logger.info(f"mesh: {peer} disconnected")
        for other in others:
            if other.on_state is not None:
                other.on_state(peer, False)

    def deliver(self, sender: str, receiver: str, data: bytes) -> None:
        with self._lock:
            target = self._endpoints.get(receiver)
        if target is None:
            logger.warning(f"mesh: dropping message from {sender} to unknown peer {receiver}")
            return
        self.sent += 1
        if target.on_data is not None:
            target.on_data(sender, data)
