import functools

from flask import current_app, request
from flask_socketio import close_room, emit, join_room, leave_room

from minesduel import socketio
from minesduel.errors import InvalidArgument, InvalidState, InvariantViolation, NotFound
from minesduel.services.games.session_store import SessionStore, normalize_code


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _send_error(message: str, code: str) -> None:
    """Rejections are only ever reported to the acting connection."""
    emit('error', {'message': message, 'code': code})


def _reject(result) -> None:
    _send_error(result['error'], result.get('code') or InvalidState.code)


def _payload(data) -> dict:
    return data if isinstance(data, dict) else {}


def _reported(failure_message: str):
    """Report a handler failure to the actor as ``failure_message``.

    With STRICT_INVARIANTS enabled (development, tests) exceptions propagate instead.
    """
    def decorator(handler):
        @functools.wraps(handler)
        def wrapper(*args, **kwargs):
            try:
                return handler(*args, **kwargs)
            except Exception as exc:
                if current_app.config.get('STRICT_INVARIANTS'):
                    raise
                tag = 'invariant' if isinstance(exc, InvariantViolation) else 'handler'
                current_app.logger.exception(f"[{tag}] sid={_get_sid()} {exc}")
                _send_error(failure_message, InvalidState.code)
        return wrapper
    return decorator


class RoomEvents:
    """Socket.IO intents for one session store.

    Board contents go to the acting player only, progress summaries to the rest
    of the room, and membership/lifecycle events to everybody in the room.
    """

    def __init__(self, store: SessionStore):
        self.store = store

    # ---- connection ----

    def on_connect(self, auth=None):
        current_app.logger.info(f"[socket] connected sid={_get_sid()}")

    def on_disconnect(self, reason=None):
        sid = _get_sid()
        current_app.logger.info(f"[socket] disconnected sid={sid} reason={reason}")
        self._leave(sid)

    # ---- lobby ----

    @_reported('Failed to create room')
    def on_create_room(self, data=None):
        data = _payload(data)
        result = self.store.create_room(_get_sid(), data.get('nickname'))
        if not result['success']:
            return _reject(result)
        join_room(result['code'])
        emit('room-created', {'roomCode': result['code'], 'room': result['room']})

    @_reported('Failed to join room')
    def on_join_room(self, data=None):
        data = _payload(data)
        code = normalize_code(data.get('roomCode'))
        if not code:
            return _send_error('roomCode is required', InvalidArgument.code)
        result = self.store.join_room(code, _get_sid(), data.get('nickname'))
        if not result['success']:
            return _reject(result)
        join_room(code)
        emit('room-joined', {'room': result['room']})
        emit('player-joined', {'player': result['player']}, to=code, include_self=False)

    @_reported('Failed to spectate room')
    def on_spectate_room(self, data=None):
        data = _payload(data)
        code = normalize_code(data.get('roomCode'))
        if not code:
            return _send_error('roomCode is required', InvalidArgument.code)
        result = self.store.join_as_spectator(code, _get_sid(), data.get('nickname'))
        if not result['success']:
            return _reject(result)
        join_room(code)
        emit('spectate-joined', {'room': result['room'], 'spectatorView': result['spectatorView']})
        emit('spectator-joined', {
            'spectator': result['spectator'],
            'count': result['room']['spectatorCount'],
        }, to=code)

    def _current_room(self, silent=False):
        code = self.store.get_player_room(_get_sid())
        if not code and not silent:
            _send_error('Not in a room', NotFound.code)
        return code

    @_reported('Failed to set difficulty')
    def on_set_difficulty(self, data=None):
        code = self._current_room()
        if not code:
            return
        difficulty = _payload(data).get('difficulty')
        result = self.store.set_difficulty(code, _get_sid(), difficulty)
        if not result['success']:
            return _reject(result)
        emit('difficulty-changed', {'difficulty': result['difficulty']}, to=code)
        current_app.logger.info(f"[room] difficulty code={code} difficulty={result['difficulty']}")

    @_reported('Failed to toggle ready')
    def on_player_ready(self, data=None):
        code = self._current_room()
        if not code:
            return
        result = self.store.toggle_ready(code, _get_sid())
        if not result['success']:
            return _reject(result)
        emit('ready-changed', {'playerId': result['playerId'], 'ready': result['ready']}, to=code)
        if result['canStart']:
            emit('can-start', {'canStart': True}, to=code)

    @_reported('Failed to start game')
    def on_start_game(self, data=None):
        code = self._current_room()
        if not code:
            return
        result = self.store.start_game(code, _get_sid())
        if not result['success']:
            return _reject(result)
        emit('game-started', {
            'startTime': result['startTime'],
            'difficulty': result['difficulty'],
            'boardSize': result['boardSize'],
            'mineCount': result['mineCount'],
        }, to=code)

    # ---- moves ----

    def _broadcast_move(self, code, result, cells):
        emit('board-update', {
            'cells': cells,
            'playerView': result['playerView'],
            'gameOver': result.get('gameOver', False),
            'won': result.get('won', False),
        })
        emit('opponent-update', {
            'playerId': result['playerId'],
            'progress': result['progress'],
            'stats': result['stats'],
        }, to=code, include_self=False)
        if result.get('gameOverResults'):
            emit('game-over', result['gameOverResults'], to=code)

    def _move(self, operation, data, flag=False):
        code = self._current_room(silent=True)
        if not code:
            return
        data = _payload(data)
        x, y = data.get('x'), data.get('y')
        result = operation(code, _get_sid(), x, y)
        if not result['success']:
            # Board no-ops (out of bounds, revealed, flagged) carry no error
            if result.get('error'):
                _reject(result)
            return
        if flag:
            cells = [{'x': x, 'y': y, 'flagged': result['flagged']}]
        else:
            cells = result['revealedCells']
        self._broadcast_move(code, result, cells)

    @_reported('Failed to reveal cell')
    def on_cell_click(self, data=None):
        self._move(self.store.handle_cell_click, data)

    @_reported('Failed to flag cell')
    def on_cell_flag(self, data=None):
        self._move(self.store.handle_flag, data, flag=True)

    @_reported('Failed to chord cell')
    def on_cell_chord(self, data=None):
        self._move(self.store.handle_chord, data)

    # ---- lifecycle ----

    @_reported('Failed to start rematch')
    def on_request_rematch(self, data=None):
        code = self._current_room(silent=True)
        if not code:
            return
        result = self.store.reset_for_rematch(code, _get_sid())
        if not result['success']:
            return _reject(result)
        emit('rematch-started', {'room': result['room']}, to=code)

    @_reported('Failed to leave room')
    def on_leave_room(self, data=None):
        self._leave(_get_sid())

    def _leave(self, sid):
        result = self.store.leave_room(sid)
        if result is None:
            return
        code = result['roomCode']
        leave_room(code)

        if result.get('roomDeleted'):
            # Spectators still subscribed to the deleted room are dropped with it
            close_room(code)
            current_app.logger.info(f"[room] deleted code={code}")
            return

        if result['wasSpectator']:
            emit('spectator-left', {'spectatorId': sid, 'count': result['room']['spectatorCount']}, to=code)
        elif result['wasPlayer']:
            emit('player-left', {'playerId': sid, 'room': result['room']}, to=code)
            if result.get('gameEnded'):
                emit('game-over', result['gameOverResults'], to=code)
        current_app.logger.info(f"[room] left code={code} sid={sid}")


def register_socketio_handlers(store: SessionStore, namespace: str = '/') -> None:
    """Register Socket.IO event handlers bound to ``store`` on ``namespace``."""
    events = RoomEvents(store)
    socketio.on_event('connect', events.on_connect, namespace=namespace)
    socketio.on_event('disconnect', events.on_disconnect, namespace=namespace)
    socketio.on_event('create-room', events.on_create_room, namespace=namespace)
    socketio.on_event('join-room', events.on_join_room, namespace=namespace)
    socketio.on_event('spectate-room', events.on_spectate_room, namespace=namespace)
    socketio.on_event('set-difficulty', events.on_set_difficulty, namespace=namespace)
    socketio.on_event('player-ready', events.on_player_ready, namespace=namespace)
    socketio.on_event('start-game', events.on_start_game, namespace=namespace)
    socketio.on_event('cell-click', events.on_cell_click, namespace=namespace)
    socketio.on_event('cell-flag', events.on_cell_flag, namespace=namespace)
    socketio.on_event('cell-chord', events.on_cell_chord, namespace=namespace)
    socketio.on_event('request-rematch', events.on_request_rematch, namespace=namespace)
    socketio.on_event('leave-room', events.on_leave_room, namespace=namespace)
