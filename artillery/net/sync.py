"""Leader-authoritative turn synchronization between peers.

One peer hosts the session and is the leader; every other peer joined it and
is a follower. Each peer runs its own GameEngine. The leader assigns player
seats, broadcasts the board at the start of every round and decides whose
turn it is. Shots are replicated as the firing parameters (a TurnUpdate with
is_fire set), so every peer computes the same FireResult.

Around each shot the leader runs a barrier: after a round snapshot it waits
for PlayerReady from every follower, after a shot for TurnFinished. Only then
is the next player's UI enabled. Followers report a board checksum after
every shot and get the leader's snapshot back if theirs differs. A
disconnected peer forfeits its player.

Transport callbacks only queue; all engine mutation happens in `pump()` on
the simulation thread.
"""

from __future__ import annotations

import logging
import queue
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel

from ..sim.ballistics import muzzle_parameters
from ..sim.engine import EngineState, FireResult, GameEngine, GameStateError, TurnOutcome
from .messages import (
    BoardChecksum,
    BoardSnapshot,
    LeaderAnnouncement,
    PlayerReady,
    TankState,
    TurnFinished,
    TurnInfo,
    TurnUpdate,
    UIGate,
    decode_messages,
    encode_message,
)
from .settings import Settings, settings as default_settings
from .transport import PeerChannel

logger = logging.getLogger("artillery.net")

READY = "ready"
FINISHED = "finished"


class Role(str, Enum):
    LEADER = "leader"
    FOLLOWER = "follower"


class SyncProtocol:
    def __init__(
        self,
        engine: GameEngine,
        channel: PeerChannel,
        role: Role,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.channel = channel
        self.role = role
        self.settings = settings or default_settings
        self.clock = clock

        self.inbox: queue.Queue[tuple[str, str, Any]] = queue.Queue()
        self.local_player: int | None = None
        self.leader_peer: str | None = None
        self.peer_players: dict[str, int] = {}
        self.ui_enabled = False
        self.fire_results: list[FireResult] = []
        self.resyncs = 0

        self._barrier: str | None = None
        self._waiting: set[str] = set()
        self._barrier_started: float | None = None
        self._expected_checksum: str | None = None

        # Transports that push callbacks (e.g. MeshEndpoint) get wired up here.
        if hasattr(channel, "on_data"):
            channel.on_data = self.on_data
        if hasattr(channel, "on_state"):
            channel.on_state = self.on_state

    @classmethod
    def host(cls, engine: GameEngine, channel: PeerChannel, **kwargs: Any) -> SyncProtocol:
        return cls(engine, channel, Role.LEADER, **kwargs)

    @classmethod
    def join(cls, engine: GameEngine, channel: PeerChannel, **kwargs: Any) -> SyncProtocol:
        return cls(engine, channel, Role.FOLLOWER, **kwargs)

    @property
    def is_leader(self) -> bool:
        return self.role == Role.LEADER

    @property
    def is_my_turn(self) -> bool:
        return (
            self.local_player is not None
            and self.engine.state == EngineState.ROUND_IN_PROGRESS
            and self.engine.board.current_player == self.local_player
        )

    @property
    def barrier_pending(self) -> bool:
        return self._barrier is not None

    # --------------------------------------------------------------- transport

    def on_data(self, peer: str, data: bytes) -> None:
        self.inbox.put(("data", peer, data))

    def on_state(self, peer: str, connected: bool) -> None:
        self.inbox.put(("state", peer, connected))

    def _send(self, peer: str, msg: BaseModel) -> None:
        self.channel.send_to(peer, encode_message(msg))

    def _broadcast(self, msg: BaseModel, exclude: str | None = None) -> None:
        if exclude is None:
            self.channel.broadcast(encode_message(msg))
            return
        data = encode_message(msg)
        for peer in self.channel.connected_peers():
            if peer != exclude:
                self.channel.send_to(peer, data)

    def _to_leader(self, msg: BaseModel) -> None:
        if self.leader_peer is None:
            self.channel.broadcast(encode_message(msg))
        else:
            self._send(self.leader_peer, msg)

    def pump(self) -> int:
        """Process everything queued so far. Returns the number of events handled."""
        handled = 0
        while True:
            try:
                kind, peer, payload = self.inbox.get_nowait()
            except queue.Empty:
                return handled
            handled += 1
            if kind == "data":
                for msg in decode_messages(payload):
                    self._dispatch(peer, msg)
            elif kind == "state":
                if payload:
                    logger.info(f"{self.channel.local_peer}: peer {peer} connected")
                else:
                    self._on_disconnect(peer)
            elif kind == "barrier":
                self._open_turn()

    def _dispatch(self, peer: str, msg: Any) -> None:
        if isinstance(msg, LeaderAnnouncement):
            self._on_announcement(peer, msg)
        elif isinstance(msg, BoardSnapshot):
            self._on_snapshot(peer, msg)
        elif isinstance(msg, TurnUpdate):
            self._on_turn(peer, msg.turn)
        elif isinstance(msg, UIGate):
            self.ui_enabled = bool(msg.enable)
        elif isinstance(msg, PlayerReady):
            self._mark(peer, READY)
        elif isinstance(msg, TurnFinished):
            self._mark(peer, FINISHED)
        elif isinstance(msg, BoardChecksum):
            self._on_checksum(peer, msg)

    # ------------------------------------------------------------------ leader

    def start_session(self, num_ais: int | None = None, rounds: int | None = None) -> None:
        """Seat every connected peer, start the game and broadcast the first round."""
        if not self.is_leader:
            raise GameStateError("only the leader starts a session")
        followers = self.channel.connected_peers()
        if len(followers) > self.settings.MAX_PEERS:
            logger.warning(f"start_session: {len(followers)} peers, seating the first {self.settings.MAX_PEERS}")
            followers = followers[: self.settings.MAX_PEERS]
        peers = [self.channel.local_peer, *followers]
        ais = self.engine.config.num_ais if num_ais is None else int(num_ais)
        self.engine.start_game(num_players=len(peers) + ais, num_ais=ais, rounds=rounds)

        seats = [int(s) for s in self.engine.rng.permutation(len(peers))]
        self.peer_players = dict(zip(peers, seats))
        self.local_player = self.peer_players.pop(self.channel.local_peer)
        total = len(self.engine.board.players)
        for peer, seat in self.peer_players.items():
            self._send(peer, LeaderAnnouncement(player_id=seat, total_players=total))
        logger.info(f"start_session: seats {self.peer_players}, leader plays {self.local_player}")
        self._begin_round()

    def _snapshot_message(self, compress: bool | None = None) -> BoardSnapshot:
        compress = self.settings.COMPRESS_SNAPSHOTS if compress is None else compress
        snap = self.engine.snapshot(compress=compress)
        if compress:
            # Play on the same quantized terrain the followers decode.
            self.engine.load_board(snap["model"], snap["state"])
        return BoardSnapshot(model=snap["model"], state=snap["state"])

    def _begin_round(self) -> None:
        self.ui_enabled = False
        self._broadcast(self._snapshot_message())
        self._start_barrier(READY)

    def _start_barrier(self, kind: str) -> None:
        self._barrier = kind
        self._waiting = set(self.peer_players)
        self._barrier_started = self.clock()
        if not self._waiting:
            self._complete_barrier()

    def _mark(self, peer: str, kind: str) -> None:
        if not self.is_leader or self._barrier != kind:
            return
        self._waiting.discard(peer)
        if not self._waiting:
            self._complete_barrier()

    def _complete_barrier(self) -> None:
        self._barrier = None
        self._barrier_started = None
        self.inbox.put(("barrier", "", None))

    def check_barrier(self, now: float | None = None) -> list[str]:
        """Forfeit peers that have kept the barrier waiting past the timeout."""
        timeout = self.settings.BARRIER_TIMEOUT_S
        if not self.is_leader or self._barrier is None or timeout is None or self._barrier_started is None:
            return []
        now = self.clock() if now is None else now
        if now - self._barrier_started < timeout:
            return []
        late = sorted(self._waiting)
        logger.warning(f"check_barrier: {late} did not answer within {timeout}s, forfeiting")
        for peer in late:
            self._on_disconnect(peer)
        return late

    def _open_turn(self) -> None:
        engine = self.engine
        if engine.state != EngineState.ROUND_IN_PROGRESS:
            return
        idx = engine.board.current_player
        player = engine.board.players[idx]
        if player.ai is not None:
            azimuth, altitude, power = player.ai.fire_parameters(engine, idx)
            engine.set_tank_aim(azimuth, altitude, idx)
            engine.set_tank_power(power, idx)
            self._leader_fire(idx, origin=None)
        elif idx == self.local_player:
            self.ui_enabled = True
        else:
            peer = next((p for p, seat in self.peer_players.items() if seat == idx), None)
            if peer is None:
                logger.warning(f"_open_turn: nobody controls player {idx}, skipping")
                self._after_outcome(engine.skip_current_player(), resend=True)
                return
            self._send(peer, UIGate(enable=True))

    def _leader_fire(self, idx: int, origin: str | None) -> None:
        self._broadcast(TurnUpdate(turn=self._turn_info(idx, is_fire=True)), exclude=origin)
        result = self._fire()
        self._expected_checksum = self.engine.board.checksum()
        self._after_outcome(
            TurnOutcome(new_round=result.new_round, game_over=result.game_over, round_winner=result.round_winner),
            resend=False,
        )

    def _after_outcome(self, outcome: TurnOutcome, resend: bool) -> None:
        if outcome.game_over:
            logger.info(f"game over, last round won by {outcome.round_winner}")
            self._barrier = None
            if resend:
                self._broadcast(self._snapshot_message())
            return
        if outcome.new_round:
            self.engine.start_round()
            self._begin_round()
            return
        if resend:
            self._broadcast(self._snapshot_message())
            self._start_barrier(READY)
        else:
            self._start_barrier(FINISHED)

    def _on_checksum(self, peer: str, msg: BoardChecksum) -> None:
        if not self.is_leader:
            return
        if self._expected_checksum is None or msg.checksum == self._expected_checksum:
            return
        self.resyncs += 1
        logger.warning(f"checksum mismatch from {peer}, resending board")
        # Raw, so the leader keeps the board the other followers already have.
        self._send(peer, self._snapshot_message(compress=False))

    def _on_disconnect(self, peer: str) -> None:
        if not self.is_leader:
            if peer == self.leader_peer:
                logger.error(f"{self.channel.local_peer}: lost the leader {peer}")
            return
        seat = self.peer_players.pop(peer, None)
        self._waiting.discard(peer)
        if seat is None:
            return
        logger.info(f"peer {peer} left, player {seat} forfeits")
        if self.engine.state != EngineState.ROUND_IN_PROGRESS:
            return
        barrier_was = self._barrier
        outcome = self.engine.forfeit_player(seat)
        if outcome.new_round or outcome.game_over:
            self._after_outcome(outcome, resend=True)
        elif barrier_was is not None:
            # Keep the pending barrier; everyone learns about the forfeit from the board.
            self._broadcast(self._snapshot_message())
            if not self._waiting:
                self._complete_barrier()
        else:
            self._after_outcome(outcome, resend=True)

    # -------------------------------------------------------------- follower

    def _on_announcement(self, peer: str, msg: LeaderAnnouncement) -> None:
        if self.is_leader:
            logger.warning(f"ignoring leader announcement from {peer}, this peer is the leader")
            return
        # total_players is 0 when a legacy envelope leaves it out; the snapshot checks the seat then.
        if msg.player_id < 0 or 0 < msg.total_players <= msg.player_id:
            logger.warning(f"ignoring seat {msg.player_id} from {peer}, the game has {msg.total_players} players")
            return
        self.leader_peer = peer
        self.local_player = msg.player_id
        logger.info(f"{self.channel.local_peer}: seated as player {msg.player_id} of {msg.total_players}")

    def _on_snapshot(self, peer: str, msg: BoardSnapshot) -> None:
        if self.is_leader:
            logger.warning(f"ignoring board snapshot from {peer}")
            return
        try:
            self.engine.load_board(msg.model, msg.state)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"dropping malformed board snapshot from {peer}: {e!r}")
            return
        if self.local_player is not None and self.local_player >= len(self.engine.board.players):
            logger.warning(f"seat {self.local_player} is not on the board from {peer}, unseating")
            self.local_player = None
        self.leader_peer = self.leader_peer or peer
        self.ui_enabled = False
        self._to_leader(PlayerReady(player_id=self.local_player))

    # ------------------------------------------------------------------ turns

    def _turn_info(self, idx: int, is_fire: bool) -> TurnInfo:
        p = self.engine.board.players[idx]
        t = p.tank
        return TurnInfo(
            round=self.engine.board.current_round,
            player_id=idx,
            tank=TankState(
                lon=t.lon, lat=t.lat, elev=t.elev, azimuth=t.azimuth, altitude=t.altitude, velocity=t.velocity
            ),
            weapon_id=p.weapon_id,
            weapon_size_id=p.weapon_size_id,
            using_computer=p.use_targeting_computer,
            is_fire=is_fire,
        )

    def _apply_turn(self, turn: TurnInfo, idx: int) -> None:
        engine = self.engine
        player = engine.board.players[idx]
        if turn.weapon_id is not None:
            try:
                engine.select_weapon(turn.weapon_id, turn.weapon_size_id or 0, idx)
            except ValueError as e:
                logger.warning(f"ignoring weapon selection for player {idx}: {e}")
        if turn.using_computer is not None:
            player.use_targeting_computer = bool(turn.using_computer)
        if turn.tank is not None:
            tank = turn.tank
            azimuth = tank.azimuth if tank.azimuth is not None else player.tank.azimuth
            altitude = tank.altitude if tank.altitude is not None else player.tank.altitude
            engine.set_tank_aim(azimuth, altitude, idx)
            if tank.velocity is not None:
                engine.set_tank_power(tank.velocity, idx)

    def _on_turn(self, peer: str, turn: TurnInfo) -> None:
        engine = self.engine
        if not engine.board.players:
            logger.warning(f"turn update from {peer} before the game started")
            return
        if self.is_leader:
            seat = self.peer_players.get(peer)
            if seat is None:
                logger.warning(f"turn update from unseated peer {peer}")
                return
            if turn.player_id is not None and turn.player_id != seat:
                logger.warning(f"peer {peer} sent a turn for player {turn.player_id}, it plays {seat}")
            is_fire = turn.is_fire and seat == engine.board.current_player
            if turn.is_fire and not is_fire:
                logger.warning(f"peer {peer} fired out of turn")
            self._apply_turn(turn, seat)
            if is_fire and engine.state == EngineState.ROUND_IN_PROGRESS:
                self._leader_fire(seat, origin=peer)
            else:
                sanitized = turn.model_copy(update={"player_id": seat, "is_fire": False})
                self._broadcast(TurnUpdate(turn=sanitized), exclude=peer)
            return

        idx = turn.player_id if turn.player_id is not None else engine.board.current_player
        if not 0 <= idx < len(engine.board.players):
            logger.warning(f"turn update for unknown player {idx}")
            return
        self._apply_turn(turn, idx)
        if not turn.is_fire:
            return
        if idx != engine.board.current_player or engine.state != EngineState.ROUND_IN_PROGRESS:
            logger.warning(f"fire for player {idx} out of turn, waiting for resync")
            self._report()
            return
        self._fire()
        self._report()

    def _fire(self) -> FireResult:
        result = self.engine.fire()
        self.fire_results.append(result)
        self.ui_enabled = False
        return result

    def _report(self) -> None:
        if not self.is_leader:
            if self.settings.VERIFY_CHECKSUMS:
                self._to_leader(BoardChecksum(player_id=self.local_player, checksum=self.engine.board.checksum()))
            self._to_leader(TurnFinished(player_id=self.local_player))

    # ------------------------------------------------------------ local input

    def update_aim(
        self,
        azimuth: float | None = None,
        altitude: float | None = None,
        power: float | None = None,
        weapon_id: int | None = None,
        size_id: int | None = None,
    ) -> None:
        """Apply the local player's aim/weapon changes and share them."""
        if self.local_player is None:
            raise GameStateError("no local player seated yet")
        engine = self.engine
        idx = self.local_player
        tank = engine.board.players[idx].tank
        if weapon_id is not None:
            engine.select_weapon(weapon_id, size_id or 0, idx)
        engine.set_tank_aim(
            tank.azimuth if azimuth is None else azimuth, tank.altitude if altitude is None else altitude, idx
        )
        if power is not None:
            engine.set_tank_power(power, idx)
        msg = TurnUpdate(turn=self._turn_info(idx, is_fire=False))
        if self.is_leader:
            self._broadcast(msg)
        else:
            self._to_leader(msg)

    def fire(self) -> FireResult:
        """Fire the local player's shot."""
        if not self.is_my_turn or not self.ui_enabled:
            raise GameStateError("not this peer's turn")
        idx = self.local_player
        assert idx is not None
        if self.is_leader:
            self._leader_fire(idx, origin=None)
            return self.fire_results[-1]
        self._to_leader(TurnUpdate(turn=self._turn_info(idx, is_fire=True)))
        result = self._fire()
        self._report()
        return result

    def predicted_muzzle(self) -> tuple[Any, Any]:
        """Muzzle position/velocity the local player's shot will leave with."""
        if self.local_player is None:
            raise GameStateError("no local player seated yet")
        return muzzle_parameters(self.engine.board.players[self.local_player].tank)
