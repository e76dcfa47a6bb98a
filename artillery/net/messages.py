"""Wire messages exchanged between peers.

Every message is a JSON object with a `kind` tag. Peers running the older
envelope format send a single object with optional camelCase fields instead
(`GameNetworkMessage`); `decode_messages` accepts both and reads every
envelope field on its own, so one malformed field never costs the rest.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger("artillery.net")


class TankState(BaseModel):
    lon: float | None = None
    lat: float | None = None
    elev: float | None = None
    azimuth: float | None = None
    altitude: float | None = None
    velocity: float | None = None


class TurnInfo(BaseModel):
    """Aim/weapon state of the player whose turn it is; any field may be absent."""

    model_config = ConfigDict(populate_by_name=True)

    round: int | None = None
    player_id: int | None = Field(default=None, alias="playerID")
    tank: TankState | None = None
    weapon_id: int | None = Field(default=None, alias="weaponID")
    weapon_size_id: int | None = Field(default=None, alias="weaponSizeID")
    using_computer: bool | None = Field(default=None, alias="usingComputer")
    is_fire: bool = Field(default=False, alias="isFire")


class LeaderAnnouncement(BaseModel):
    kind: Literal["leader"] = "leader"
    player_id: int
    total_players: int


class BoardSnapshot(BaseModel):
    kind: Literal["snapshot"] = "snapshot"
    model: dict[str, Any]
    state: str | None = None


class TurnUpdate(BaseModel):
    kind: Literal["turn"] = "turn"
    turn: TurnInfo


class UIGate(BaseModel):
    kind: Literal["ui_gate"] = "ui_gate"
    enable: bool


class PlayerReady(BaseModel):
    kind: Literal["ready"] = "ready"
    player_id: int | None = None


class TurnFinished(BaseModel):
    kind: Literal["finished_turn"] = "finished_turn"
    player_id: int | None = None


class BoardChecksum(BaseModel):
    kind: Literal["checksum"] = "checksum"
    player_id: int | None = None
    checksum: str


Message = Annotated[
    Union[LeaderAnnouncement, BoardSnapshot, TurnUpdate, UIGate, PlayerReady, TurnFinished, BoardChecksum],
    Field(discriminator="kind"),
]

_message_adapter: TypeAdapter[Any] = TypeAdapter(Message)


class GameNetworkMessage(BaseModel):
    """Envelope format: any subset of these fields may be present."""

    model_config = ConfigDict(populate_by_name=True)

    from_leader: bool | None = Field(default=None, alias="fromLeader")
    player_id: int | None = Field(default=None, alias="playerID")
    player_ready: bool | None = Field(default=None, alias="playerReady")
    total_players: int | None = Field(default=None, alias="totalPlayers")
    game_model: dict[str, Any] | None = Field(default=None, alias="gameModel")
    turn_info: TurnInfo | None = Field(default=None, alias="turnInfo")
    enable_ui: bool | None = Field(default=None, alias="enableUI")
    finished_turn: bool | None = Field(default=None, alias="finishedTurn")
    check_sum: str | None = Field(default=None, alias="checkSum")


_ENVELOPE_FIELDS = {
    info.alias: (name, TypeAdapter(info.annotation)) for name, info in GameNetworkMessage.model_fields.items()
}


def encode_message(msg: BaseModel) -> bytes:
    return msg.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


def parse_envelope(obj: dict[str, Any]) -> GameNetworkMessage:
    """Envelope with every field validated independently; bad fields are dropped."""
    values: dict[str, Any] = {}
    for key, raw in obj.items():
        entry = _ENVELOPE_FIELDS.get(key)
        if entry is None:
            logger.debug(f"decode: ignoring unknown envelope field {key!r}")
            continue
        name, adapter = entry
        try:
            values[name] = adapter.validate_python(raw)
        except ValidationError as e:
            logger.warning(f"decode: dropping malformed field {key!r}: {e.error_count()} errors")
    return GameNetworkMessage(**values)


def envelope_to_messages(env: GameNetworkMessage) -> list[Any]:
    out: list[Any] = []
    if env.from_leader and env.player_id is not None:
        out.append(LeaderAnnouncement(player_id=env.player_id, total_players=env.total_players or 0))
    if env.game_model is not None:
        out.append(BoardSnapshot(model=env.game_model))
    if env.turn_info is not None:
        out.append(TurnUpdate(turn=env.turn_info))
    if env.player_ready:
        out.append(PlayerReady(player_id=env.player_id))
    if env.finished_turn:
        out.append(TurnFinished(player_id=env.player_id))
    if env.enable_ui is not None:
        out.append(UIGate(enable=env.enable_ui))
    if env.check_sum is not None:
        out.append(BoardChecksum(player_id=env.player_id, checksum=env.check_sum))
    return out


def decode_messages(data: bytes | str) -> list[Any]:
    """Decode one wire payload into zero or more typed messages."""
    try:
        obj = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"decode: payload is not JSON: {e}")
        return []
    if not isinstance(obj, dict):
        logger.warning(f"decode: expected an object, got {type(obj).__name__}")
        return []
    if "kind" in obj:
        try:
            return [_message_adapter.validate_python(obj)]
        except ValidationError as e:
            logger.warning(f"decode: dropping malformed {obj.get('kind')!r} message: {e.error_count()} errors")
            return []
    return envelope_to_messages(parse_envelope(obj))
