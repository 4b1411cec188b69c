"""In-memory registry of rooms and the room lifecycle.

All room and player state is mutated here. Every operation on a room runs under
that room's lock, so a reveal, a flag or a departure is applied atomically with
respect to any other operation on the same room. The registry (room codes and
the connection -> room reverse index) is guarded by its own lock; when both are
needed the room lock is always taken first.

Public operations never raise ``SessionError``: rejections come back as
``{'success': False, 'error': message, 'code': kind}``.
"""
import functools
import logging
import random
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from minesduel.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    InvariantViolation,
    NotFound,
    SessionError,
)
from minesduel.models import (
    STATUS_FINISHED,
    STATUS_PLAYING,
    STATUS_WAITING,
    Player,
    Room,
    Spectator,
    empty_stats,
    generate_room_code,
    now_ms,
)
from .board import Board, MoveResult, get_difficulty
from .sync import synchronize_first_reveal

logger = logging.getLogger(__name__)

REASON_COMPLETED = 'completed'
REASON_HIT_MINE = 'hit_mine'
REASON_OPPONENT_LEFT = 'opponent_left'


def normalize_code(code) -> str:
    return str(code or '').strip().upper()


def _guarded(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SessionError as exc:
            logger.info(f"[rejected] op={method.__name__} code={exc.code} error={exc.message}")
            return exc.to_result()
    return wrapper


class SessionStore:
    def __init__(self, max_spectators=10, code_length=6, rng=None):
        self.rooms: Dict[str, Room] = {}
        self.player_rooms: Dict[str, str] = {}  # connection id -> room code
        self.max_spectators = max_spectators
        self.code_length = code_length
        self._rng = rng or random.Random()
        self._lock = threading.RLock()

    # ---- registry helpers ----

    def _lookup(self, code: str) -> Room:
        with self._lock:
            room = self.rooms.get(normalize_code(code))
        if room is None:
            raise NotFound('Room not found')
        return room

    @contextmanager
    def _locked_room(self, code: str) -> Iterator[Room]:
        room = self._lookup(code)
        with room.lock:
            if room.closed:
                raise NotFound('Room not found')
            yield room

    def _claim_connection(self, sid: str, code: str) -> None:
        with self._lock:
            current = self.player_rooms.get(sid)
            if current is not None and current in self.rooms:
                raise Conflict('Already in a room')
            self.player_rooms[sid] = code

    def _release_connection(self, sid: str) -> None:
        with self._lock:
            self.player_rooms.pop(sid, None)

    def _new_board(self, difficulty: str) -> Board:
        return Board.for_difficulty(difficulty, rng=random.Random(self._rng.getrandbits(64)))

    # ---- lobby ----

    @_guarded
    def create_room(self, sid: str, nickname: Optional[str] = None):
        with self._lock:
            if self.player_rooms.get(sid) in self.rooms:
                raise Conflict('Already in a room')
            code = generate_room_code(self.rooms.keys(), length=self.code_length, rng=self._rng)
            room = Room(code=code, host=sid, players=[Player(id=sid, nickname=nickname or 'Player 1')])
            self.rooms[code] = room
            self.player_rooms[sid] = code
        logger.info(f"[room] created code={code} host={sid}")
        return {'success': True, 'code': code, 'room': room.to_dict()}

    @_guarded
    def join_room(self, code: str, sid: str, nickname: Optional[str] = None):
        with self._locked_room(code) as room:
            if room.status != STATUS_WAITING:
                raise InvalidState('Game already in progress')
            if room.is_full:
                raise Conflict('Room is full')
            if room.find_player(sid) or room.find_spectator(sid):
                raise Conflict('Already in room')
            self._claim_connection(sid, room.code)
            player = Player(id=sid, nickname=nickname or 'Player 2')
            room.players.append(player)
            logger.info(f"[room] joined code={room.code} player={sid}")
            return {'success': True, 'room': room.to_dict(), 'player': player.to_dict()}

    @_guarded
    def join_as_spectator(self, code: str, sid: str, nickname: Optional[str] = None):
        with self._locked_room(code) as room:
            if len(room.spectators) >= self.max_spectators:
                raise Conflict('Too many spectators')
            if room.find_spectator(sid):
                raise Conflict('Already spectating')
            if room.find_player(sid):
                raise Conflict('Already in room')
            self._claim_connection(sid, room.code)
            spectator = Spectator(id=sid, nickname=nickname or 'Spectator')
            room.spectators.append(spectator)
            logger.info(f"[room] spectating code={room.code} spectator={sid}")
            return {
                'success': True,
                'isSpectator': True,
                'room': room.to_dict(),
                'spectator': spectator.to_dict(),
                'spectatorView': room.spectator_view(),
            }

    @_guarded
    def set_difficulty(self, code: str, sid: str, difficulty: str):
        with self._locked_room(code) as room:
            if room.host != sid:
                raise Forbidden('Not the host')
            if room.status != STATUS_WAITING:
                raise InvalidState('Game already started')
            get_difficulty(difficulty)
            room.difficulty = difficulty
            return {'success': True, 'difficulty': difficulty}

    @_guarded
    def toggle_ready(self, code: str, sid: str):
        with self._locked_room(code) as room:
            player = room.find_player(sid)
            if player is None:
                raise NotFound('Player not in room')
            if room.status != STATUS_WAITING:
                raise InvalidState('Game not in lobby')
            player.ready = not player.ready
            return {'success': True, 'playerId': sid, 'ready': player.ready, 'canStart': room.all_ready}

    def can_start_game(self, code: str) -> bool:
        try:
            with self._locked_room(code) as room:
                return room.status == STATUS_WAITING and room.all_ready
        except NotFound:
            return False

    @_guarded
    def start_game(self, code: str, sid: str):
        with self._locked_room(code) as room:
            if room.find_player(sid) is None:
                raise NotFound('Player not in room')
            if room.host != sid:
                raise Forbidden('Only the host can start the game')
            if room.status != STATUS_WAITING:
                raise InvalidState('Game already started')
            if not room.all_ready:
                raise InvalidState('Cannot start game')
            for player in room.players:
                player.board = self._new_board(room.difficulty)
                player.stats = empty_stats()
            room.status = STATUS_PLAYING
            room.start_time = now_ms()
            preset = get_difficulty(room.difficulty)
            logger.info(f"[game] started code={room.code} difficulty={room.difficulty}")
            return {
                'success': True,
                'startTime': room.start_time,
                'difficulty': room.difficulty,
                'boardSize': {'width': preset['width'], 'height': preset['height']},
                'mineCount': preset['mines'],
            }

    # ---- moves ----

    def _require_mover(self, room: Room, sid: str) -> Player:
        if room.status != STATUS_PLAYING:
            raise InvalidState('Game not in progress')
        player = room.find_player(sid)
        if player is None:
            raise NotFound('Player not in room')
        if player.board is None:
            raise InvariantViolation(f'room {room.code} is playing but player {sid} has no board')
        return player

    def _move_result(self, room: Room, player: Player, move: MoveResult):
        result = move.to_dict()
        result.update({
            'playerId': player.id,
            'stats': dict(player.stats),
            'playerView': player.board.player_view(),
            'progress': player.board.progress(),
            'gameOverResults': None,
        })
        # First terminal move observed for the room decides the game
        if move.game_over and room.status == STATUS_PLAYING:
            if move.won:
                winner_id, reason = player.id, REASON_COMPLETED
            else:
                opponent = room.opponent_of(player.id)
                winner_id, reason = (opponent.id if opponent else None), REASON_HIT_MINE
            result['gameOverResults'] = self._end_game(room, winner_id, reason)
        return result

    @_guarded
    def handle_cell_click(self, code: str, sid: str, x, y):
        with self._locked_room(code) as room:
            player = self._require_mover(room, sid)
            opponent = room.opponent_of(sid)
            clone = synchronize_first_reveal(player.board, opponent.board if opponent else None, x, y)
            if clone is not None:
                opponent.board = clone
                logger.info(f"[sync] code={room.code} anchor={sid} x={x} y={y}")
            player.stats['clicks'] += 1
            move = player.board.reveal(x, y)
            return self._move_result(room, player, move)

    @_guarded
    def handle_chord(self, code: str, sid: str, x, y):
        with self._locked_room(code) as room:
            player = self._require_mover(room, sid)
            player.stats['clicks'] += 1
            move = player.board.chord(x, y)
            return self._move_result(room, player, move)

    @_guarded
    def handle_flag(self, code: str, sid: str, x, y):
        with self._locked_room(code) as room:
            player = self._require_mover(room, sid)
            flag = player.board.toggle_flag(x, y)
            if flag.success:
                player.stats['flags'] += 1 if flag.flagged else -1
            return {
                'success': flag.success,
                'flagged': flag.flagged,
                'playerId': player.id,
                'stats': dict(player.stats),
                'playerView': player.board.player_view(),
                'progress': player.board.progress(),
            }

    # ---- endings ----

    def _end_game(self, room: Room, winner_id: Optional[str], reason: str):
        room.status = STATUS_FINISHED
        duration = now_ms() - room.start_time if room.start_time is not None else 0
        logger.info(f"[game] over code={room.code} winner={winner_id} reason={reason}")
        return {
            'winner': winner_id,
            'reason': reason,
            'duration': duration,
            'players': [
                {
                    'id': p.id,
                    'nickname': p.nickname,
                    'stats': dict(p.stats),
                    'progress': p.progress(),
                    'won': p.id == winner_id,
                    # Unredacted: the game is over
                    'fullBoard': p.board.full_board() if p.board else None,
                }
                for p in room.players
            ],
        }

    @_guarded
    def end_game(self, code: str, winner_id: Optional[str], reason: str):
        with self._locked_room(code) as room:
            if room.status != STATUS_PLAYING:
                raise InvalidState('Game not in progress')
            return {'success': True, 'results': self._end_game(room, winner_id, reason)}

    def leave_room(self, sid: str):
        """Remove ``sid`` from whatever room it is in.

        Returns None when the connection is in no room. A player leaving a game
        in progress forfeits it to the remaining player.
        """
        with self._lock:
            code = self.player_rooms.get(sid)
            room = self.rooms.get(code) if code else None
        if room is None:
            self._release_connection(sid)
            return None

        with room.lock:
            if room.closed:
                self._release_connection(sid)
                return None

            spectator = room.find_spectator(sid)
            if spectator is not None:
                room.spectators.remove(spectator)
                self._release_connection(sid)
                logger.info(f"[room] spectator left code={code} spectator={sid}")
                return {'roomCode': code, 'wasSpectator': True, 'wasPlayer': False, 'room': room.to_dict()}

            player = room.find_player(sid)
            if player is None:
                self._release_connection(sid)
                return None

            was_host = room.host == sid
            room.players.remove(player)
            self._release_connection(sid)

            if not room.players:
                evicted = [s.id for s in room.spectators]
                with self._lock:
                    for spectator_id in evicted:
                        self.player_rooms.pop(spectator_id, None)
                    self.rooms.pop(code, None)
                room.spectators.clear()
                room.closed = True
                logger.info(f"[room] deleted code={code} evicted={len(evicted)}")
                return {
                    'roomCode': code,
                    'wasHost': was_host,
                    'wasSpectator': False,
                    'wasPlayer': True,
                    'roomDeleted': True,
                    'evictedSpectators': evicted,
                }

            if was_host:
                room.host = room.players[0].id

            result = {
                'roomCode': code,
                'wasHost': was_host,
                'wasSpectator': False,
                'wasPlayer': True,
                'roomDeleted': False,
                'gameEnded': False,
            }
            if room.status == STATUS_PLAYING:
                winner = room.players[0]
                result['gameEnded'] = True
                result['winner'] = winner.id
                result['gameOverResults'] = self._end_game(room, winner.id, REASON_OPPONENT_LEFT)
            result['room'] = room.to_dict()
            logger.info(f"[room] player left code={code} player={sid} host={room.host}")
            return result

    @_guarded
    def reset_for_rematch(self, code: str, sid: str):
        with self._locked_room(code) as room:
            if room.find_player(sid) is None:
                raise NotFound('Player not in room')
            if room.status != STATUS_FINISHED:
                raise InvalidState('Game not finished')
            room.status = STATUS_WAITING
            room.start_time = None
            for player in room.players:
                player.reset()
            logger.info(f"[game] rematch code={room.code}")
            return {'success': True, 'room': room.to_dict()}

    # ---- read models ----

    def get_room_info(self, code: str):
        try:
            with self._locked_room(code) as room:
                return room.to_dict()
        except NotFound:
            return None

    def get_spectator_view(self, code: str):
        try:
            with self._locked_room(code) as room:
                return room.spectator_view()
        except NotFound:
            return None

    def get_player_room(self, sid: str) -> Optional[str]:
        with self._lock:
            return self.player_rooms.get(sid)

    def is_spectator(self, code: str, sid: str) -> bool:
        try:
            with self._locked_room(code) as room:
                return room.find_spectator(sid) is not None
        except NotFound:
            return False
