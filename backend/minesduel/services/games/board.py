"""Single-board minesweeper engine.

Knows nothing about rooms, players or sockets. Coordinates are ``(x, y)`` with
``x`` the column and ``y`` the row; the grid is stored row-major as
``grid[y][x]``. Mines are placed lazily on the first reveal so that the 3x3
neighbourhood of that click is always mine-free.
"""
import math
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from minesduel.errors import ConfigurationError, InvalidArgument

Position = Tuple[int, int]

# Difficulty presets: fixed table, selectable per room
DIFFICULTIES: Dict[str, Dict[str, int]] = {
    'beginner': {'width': 9, 'height': 9, 'mines': 10},
    'intermediate': {'width': 16, 'height': 16, 'mines': 40},
    'expert': {'width': 30, 'height': 16, 'mines': 99},
}
DEFAULT_DIFFICULTY = 'beginner'


def get_difficulty(key: str) -> Dict[str, int]:
    preset = DIFFICULTIES.get(key) if isinstance(key, str) else None
    if preset is None:
        raise InvalidArgument('Invalid difficulty')
    return preset


@dataclass
class Cell:
    x: int
    y: int
    is_mine: bool = False
    adjacent_mines: int = 0
    revealed: bool = False
    flagged: bool = False

    def reveal_entry(self) -> dict:
        if self.is_mine:
            return {'x': self.x, 'y': self.y, 'isMine': True}
        return {'x': self.x, 'y': self.y, 'adjacentMines': self.adjacent_mines, 'isMine': False}

    def to_view(self) -> dict:
        # Hidden cells never carry mine or number data
        return {
            'x': self.x,
            'y': self.y,
            'revealed': self.revealed,
            'flagged': self.flagged,
            'adjacentMines': self.adjacent_mines if self.revealed else None,
            'isMine': True if (self.revealed and self.is_mine) else None,
        }

    def to_dict(self) -> dict:
        return {
            'x': self.x,
            'y': self.y,
            'revealed': self.revealed,
            'flagged': self.flagged,
            'adjacentMines': self.adjacent_mines,
            'isMine': self.is_mine,
        }


@dataclass
class MoveResult:
    """Outcome of a reveal or chord."""

    success: bool
    game_over: bool = False
    won: bool = False
    revealed_cells: List[dict] = field(default_factory=list)

    @property
    def hit_mine(self) -> bool:
        return self.game_over and not self.won

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'gameOver': self.game_over,
            'won': self.won,
            'revealedCells': list(self.revealed_cells),
        }


@dataclass
class FlagResult:
    success: bool
    flagged: bool = False


class Board:
    def __init__(self, width: int, height: int, mine_count: int, rng: Optional[random.Random] = None):
        if width < 1 or height < 1:
            raise ConfigurationError('Board dimensions must be positive')
        if mine_count < 0:
            raise ConfigurationError('Number of mines cannot be negative')
        self.width = width
        self.height = height
        self.mine_count = mine_count
        self.initialized = False
        self.mines: Set[Position] = set()
        self.grid: List[List[Cell]] = self._blank_grid()
        self._rng = rng or random.Random()

    @classmethod
    def for_difficulty(cls, key: str, rng: Optional[random.Random] = None) -> 'Board':
        preset = get_difficulty(key)
        return cls(preset['width'], preset['height'], preset['mines'], rng=rng)

    def _blank_grid(self) -> List[List[Cell]]:
        return [[Cell(x, y) for x in range(self.width)] for y in range(self.height)]

    # ---- geometry ----

    @property
    def area(self) -> int:
        return self.width * self.height

    def in_bounds(self, x, y) -> bool:
        if not isinstance(x, int) or not isinstance(y, int) or isinstance(x, bool) or isinstance(y, bool):
            return False
        return 0 <= x < self.width and 0 <= y < self.height

    def neighbors(self, x: int, y: int) -> Iterator[Position]:
        for ny in range(max(0, y - 1), min(self.height, y + 2)):
            for nx in range(max(0, x - 1), min(self.width, x + 2)):
                if nx == x and ny == y:
                    continue
                yield nx, ny

    def safe_zone(self, x: int, y: int) -> Set[Position]:
        """The anchor cell plus its neighbours, clamped to the grid."""
        zone = set(self.neighbors(x, y))
        if self.in_bounds(x, y):
            zone.add((x, y))
        return zone

    def cells(self) -> Iterator[Cell]:
        for row in self.grid:
            yield from row

    # ---- initialization ----

    def initialize(self, safe_x: int, safe_y: int) -> None:
        """Place mines outside the safe zone of ``(safe_x, safe_y)`` and compute numbers."""
        if self.mine_count >= self.area:
            raise ConfigurationError(
                f'Too many mines: {self.mine_count} on a {self.width}x{self.height} board'
            )
        self.grid = self._blank_grid()
        excluded = self.safe_zone(safe_x, safe_y)
        candidates = [
            (x, y) for y in range(self.height) for x in range(self.width) if (x, y) not in excluded
        ]
        if len(candidates) < self.mine_count:
            # Crowded board: only the clicked cell itself stays guaranteed safe
            candidates = [
                (x, y) for y in range(self.height) for x in range(self.width) if (x, y) != (safe_x, safe_y)
            ]
        self.mines = set(self._rng.sample(candidates, self.mine_count))
        for x, y in self.mines:
            self.grid[y][x].is_mine = True
        for cell in self.cells():
            if not cell.is_mine:
                cell.adjacent_mines = self._count_adjacent_mines(cell.x, cell.y)
        self.initialized = True

    def _count_adjacent_mines(self, x: int, y: int) -> int:
        return sum(1 for nx, ny in self.neighbors(x, y) if self.grid[ny][nx].is_mine)

    # ---- moves ----

    def reveal(self, x, y) -> MoveResult:
        if not self.in_bounds(x, y):
            return MoveResult(success=False)
        if not self.initialized:
            self.initialize(x, y)
        cell = self.grid[y][x]
        if cell.revealed or cell.flagged:
            return MoveResult(success=False)
        if cell.is_mine:
            cell.revealed = True
            return MoveResult(success=True, game_over=True, won=False, revealed_cells=[cell.reveal_entry()])
        revealed = self._flood_reveal(x, y)
        won = self.check_win()
        return MoveResult(success=True, game_over=won, won=won, revealed_cells=revealed)

    def _flood_reveal(self, x: int, y: int) -> List[dict]:
        revealed: List[dict] = []
        pending = deque([(x, y)])
        while pending:
            cx, cy = pending.pop()
            cell = self.grid[cy][cx]
            if cell.revealed or cell.flagged or cell.is_mine:
                continue
            cell.revealed = True
            revealed.append(cell.reveal_entry())
            if cell.adjacent_mines == 0:
                pending.extend(
                    (nx, ny) for nx, ny in self.neighbors(cx, cy)
                    if not self.grid[ny][nx].revealed and not self.grid[ny][nx].flagged
                )
        return revealed

    def toggle_flag(self, x, y) -> FlagResult:
        if not self.initialized or not self.in_bounds(x, y):
            return FlagResult(success=False)
        cell = self.grid[y][x]
        if cell.revealed:
            return FlagResult(success=False)
        cell.flagged = not cell.flagged
        return FlagResult(success=True, flagged=cell.flagged)

    def chord(self, x, y) -> MoveResult:
        """Reveal every unflagged neighbour of a numbered cell.

        Only fires when the number of flagged neighbours matches the cell's
        number; a mismatch is a no-op rather than a gamble.
        """
        if not self.initialized or not self.in_bounds(x, y):
            return MoveResult(success=False)
        cell = self.grid[y][x]
        if not cell.revealed or cell.adjacent_mines == 0:
            return MoveResult(success=False)
        neighbours = [self.grid[ny][nx] for nx, ny in self.neighbors(x, y)]
        if sum(1 for n in neighbours if n.flagged) != cell.adjacent_mines:
            return MoveResult(success=False)

        revealed: List[dict] = []
        hit_mine = False
        for neighbour in neighbours:
            if neighbour.revealed or neighbour.flagged:
                continue
            if neighbour.is_mine:
                neighbour.revealed = True
                revealed.append(neighbour.reveal_entry())
                hit_mine = True
            else:
                revealed.extend(self._flood_reveal(neighbour.x, neighbour.y))
        won = not hit_mine and self.check_win()
        return MoveResult(success=True, game_over=hit_mine or won, won=won, revealed_cells=revealed)

    def check_win(self) -> bool:
        if not self.initialized:
            return False
        return all(cell.revealed for cell in self.cells() if not cell.is_mine)

    # ---- projections ----

    def player_view(self) -> List[List[dict]]:
        return [[cell.to_view() for cell in row] for row in self.grid]

    def progress(self) -> dict:
        """Redacted summary that is safe to share with the opponent and spectators."""
        total_safe = self.area - self.mine_count
        revealed_positions = []
        flagged_positions = []
        for cell in self.cells():
            if cell.revealed and not cell.is_mine:
                revealed_positions.append({'x': cell.x, 'y': cell.y})
            if cell.flagged:
                flagged_positions.append({'x': cell.x, 'y': cell.y})
        revealed = len(revealed_positions)
        return {
            # Half rounds up, 12.5% reads as 13%
            'progress': math.floor(revealed * 100 / total_safe + 0.5) if total_safe > 0 else 0,
            'revealed': revealed,
            'totalSafe': total_safe,
            'flagged': len(flagged_positions),
            'revealedPositions': revealed_positions,
            'flaggedPositions': flagged_positions,
        }

    def full_board(self) -> List[List[dict]]:
        return [[cell.to_dict() for cell in row] for row in self.grid]
