import random
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from minesduel.services.games.board import DEFAULT_DIFFICULTY, Board

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_PLAYERS = 2

STATUS_WAITING = 'waiting'
STATUS_PLAYING = 'playing'
STATUS_FINISHED = 'finished'


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_room_code(taken: Iterable[str], length=6, rng=random):
    """Generate a room code that is not in ``taken``."""
    taken = set(taken)
    while True:
        code = ''.join(rng.choices(ROOM_CODE_ALPHABET, k=length))
        if code not in taken:
            return code


def empty_stats():
    return {'clicks': 0, 'flags': 0}


@dataclass
class Player:
    id: str
    nickname: str
    ready: bool = False
    board: Optional[Board] = None
    stats: dict = field(default_factory=empty_stats)

    def progress(self):
        return self.board.progress() if self.board else None

    def reset(self) -> None:
        self.ready = False
        self.board = None
        self.stats = empty_stats()

    def to_dict(self):
        return {
            'id': self.id,
            'nickname': self.nickname,
            'ready': self.ready,
            'progress': self.progress(),
        }


@dataclass
class Spectator:
    id: str
    nickname: str
    joined_at: int = field(default_factory=now_ms)

    def to_dict(self):
        return {'id': self.id, 'nickname': self.nickname}


@dataclass
class Room:
    code: str
    host: str
    players: List[Player] = field(default_factory=list)
    spectators: List[Spectator] = field(default_factory=list)
    difficulty: str = DEFAULT_DIFFICULTY
    status: str = STATUS_WAITING
    start_time: Optional[int] = None
    # Set once the room is removed from the registry
    closed: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def find_player(self, participant_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.id == participant_id), None)

    def find_spectator(self, participant_id: str) -> Optional[Spectator]:
        return next((s for s in self.spectators if s.id == participant_id), None)

    def opponent_of(self, player_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.id != player_id), None)

    @property
    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    @property
    def all_ready(self) -> bool:
        return len(self.players) == MAX_PLAYERS and all(p.ready for p in self.players)

    def spectator_view(self):
        if self.status != STATUS_PLAYING:
            return None
        return [
            {'id': p.id, 'nickname': p.nickname, 'progress': p.progress(), 'stats': dict(p.stats)}
            for p in self.players
        ]

    def to_dict(self):
        return {
            'code': self.code,
            'host': self.host,
            'players': [p.to_dict() for p in self.players],
            'spectators': [s.to_dict() for s in self.spectators],
            'spectatorCount': len(self.spectators),
            'difficulty': self.difficulty,
            'status': self.status,
            'startTime': self.start_time,
        }
