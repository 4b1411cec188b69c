import copy
from typing import Optional

from minesduel.errors import InvariantViolation
from .board import Board


def clone_layout(source: Board) -> Board:
    """Return a fresh, initialized Board carrying ``source``'s mine layout.

    The grid is value-copied so the two boards never alias; every cell of the
    copy starts hidden and unflagged.
    """
    if not source.initialized:
        raise InvariantViolation('cannot clone the layout of an uninitialized board')
    board = Board(source.width, source.height, source.mine_count)
    board.grid = copy.deepcopy(source.grid)
    board.mines = set(source.mines)
    for cell in board.cells():
        cell.revealed = False
        cell.flagged = False
    board.initialized = True
    return board


def synchronize_first_reveal(board: Board, opponent_board: Optional[Board], x, y) -> Optional[Board]:
    """Anchor the room's mine layout on the first reveal submitted by either player.

    Initializes ``board`` from ``(x, y)`` when it has no layout yet and returns
    a cloned board for the opponent when theirs is still uninitialized. Returns
    None when nothing needs replacing. The opponent's first click is therefore
    not guaranteed to be safe.
    """
    if board.initialized or not board.in_bounds(x, y):
        return None
    if opponent_board is not None and opponent_board.initialized:
        raise InvariantViolation('opponent board has a layout this board never received')
    board.initialize(x, y)
    if opponent_board is not None and not opponent_board.initialized:
        return clone_layout(board)
    return None
