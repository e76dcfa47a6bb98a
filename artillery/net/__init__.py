from .messages import (
    BoardChecksum,
    BoardSnapshot,
    GameNetworkMessage,
    LeaderAnnouncement,
    PlayerReady,
    TurnFinished,
    TurnInfo,
    TurnUpdate,
    UIGate,
    decode_messages,
    encode_message,
)
from .settings import Settings, settings
from .sync import Role, SyncProtocol
from .transport import InMemoryMesh, MeshEndpoint, PeerChannel

__all__ = [
    "BoardChecksum",
    "BoardSnapshot",
    "GameNetworkMessage",
    "InMemoryMesh",
    "LeaderAnnouncement",
    "MeshEndpoint",
    "PeerChannel",
    "PlayerReady",
    "Role",
    "Settings",
    "SyncProtocol",
    "TurnFinished",
    "TurnInfo",
    "TurnUpdate",
    "UIGate",
    "decode_messages",
    "encode_message",
    "settings",
]
