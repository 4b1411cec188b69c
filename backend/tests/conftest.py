import os
import random
import sys
import pytest

# Ensure the backend root (containing the `minesduel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from minesduel import create_app, socketio
from minesduel.services.games.board import Board
from minesduel.services.games.session_store import SessionStore


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    CORS_ALLOWED_ORIGINS = ['http://localhost:5173']
    SOCKETIO_NAMESPACE = '/'
    MAX_SPECTATORS = 10
    ROOM_CODE_LENGTH = 6
    STRICT_INVARIANTS = True
    LOG_LEVEL = 'DEBUG'


def planted_board(width, height, mines):
    """An initialized board with mines at exactly the given (x, y) positions."""
    board = Board(width, height, len(mines))
    board.mines = set(mines)
    for x, y in board.mines:
        board.grid[y][x].is_mine = True
    for cell in board.cells():
        if not cell.is_mine:
            cell.adjacent_mines = sum(1 for pos in board.neighbors(cell.x, cell.y) if pos in board.mines)
    board.initialized = True
    return board


@pytest.fixture()
def store():
    return SessionStore(rng=random.Random(7))


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        yield application


@pytest.fixture()
def app_store(flask_app):
    return flask_app.extensions['session_store']


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client_factory(flask_app):
    clients = []

    def _connect():
        test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client())
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected():
                test_client.disconnect()
        except Exception:
            pass
