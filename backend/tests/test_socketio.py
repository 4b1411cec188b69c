from types import SimpleNamespace

import pytest

from minesduel.errors import InvariantViolation


def drain(sio):
    """Received payloads grouped by event name."""
    events = {}
    for pkt in sio.get_received():
        events.setdefault(pkt['name'], []).append(pkt['args'][0] if pkt['args'] else None)
    return events


@pytest.fixture()
def duel(sio_client_factory):
    alice = sio_client_factory()
    bob = sio_client_factory()
    alice.emit('create-room', {'nickname': 'Alice'})
    created = drain(alice)['room-created'][0]
    code = created['roomCode']
    bob.emit('join-room', {'roomCode': code.lower(), 'nickname': 'Bob'})
    joined = drain(bob)['room-joined'][0]
    drain(alice)
    return SimpleNamespace(
        alice=alice,
        bob=bob,
        code=code,
        alice_id=created['room']['host'],
        bob_id=joined['room']['players'][1]['id'],
    )


def _start(duel):
    duel.alice.emit('player-ready')
    duel.bob.emit('player-ready')
    duel.alice.emit('start-game')


def test_create_and_join_routing(sio_client_factory):
    alice = sio_client_factory()
    bob = sio_client_factory()
    alice.emit('create-room', {'nickname': 'Alice'})
    created = drain(alice)['room-created'][0]
    assert created['room']['status'] == 'waiting'
    assert len(created['roomCode']) == 6

    bob.emit('join-room', {'roomCode': created['roomCode'], 'nickname': 'Bob'})
    bob_events = drain(bob)
    alice_events = drain(alice)
    assert [p['nickname'] for p in bob_events['room-joined'][0]['room']['players']] == ['Alice', 'Bob']
    assert 'player-joined' not in bob_events
    assert alice_events['player-joined'][0]['player']['nickname'] == 'Bob'


def test_join_errors_go_to_the_actor_only(sio_client_factory):
    sio = sio_client_factory()
    sio.emit('join-room', {'roomCode': 'zzzzzz', 'nickname': 'Bob'})
    assert drain(sio)['error'] == [{'message': 'Room not found', 'code': 'NotFound'}]
    sio.emit('join-room', {'nickname': 'Bob'})
    assert drain(sio)['error'][0]['code'] == 'InvalidArgument'


def test_room_full(duel, sio_client_factory):
    carol = sio_client_factory()
    carol.emit('join-room', {'roomCode': duel.code, 'nickname': 'Carol'})
    assert drain(carol)['error'][0] == {'message': 'Room is full', 'code': 'Conflict'}
    assert drain(duel.alice) == {}


def test_difficulty_is_host_only(duel):
    duel.bob.emit('set-difficulty', {'difficulty': 'expert'})
    assert drain(duel.bob)['error'][0]['code'] == 'Forbidden'
    assert drain(duel.alice) == {}

    duel.alice.emit('set-difficulty', {'difficulty': 'expert'})
    assert drain(duel.alice)['difficulty-changed'] == [{'difficulty': 'expert'}]
    assert drain(duel.bob)['difficulty-changed'] == [{'difficulty': 'expert'}]


def test_non_object_payloads_are_rejected(duel, sio_client_factory):
    sio = sio_client_factory()
    sio.emit('join-room', duel.code)
    assert drain(sio)['error'] == [{'message': 'roomCode is required', 'code': 'InvalidArgument'}]
    sio.emit('spectate-room', ['ABCDEF'])
    assert drain(sio)['error'][0]['code'] == 'InvalidArgument'

    duel.alice.emit('set-difficulty', ['expert'])
    assert drain(duel.alice)['error'] == [{'message': 'Invalid difficulty', 'code': 'InvalidArgument'}]
    assert drain(duel.bob) == {}


def test_unexpected_failure_is_reported_to_the_actor(flask_app, app_store, sio_client_factory, monkeypatch):
    flask_app.config['STRICT_INVARIANTS'] = False

    def broken_create_room(sid, nickname=None):
        raise KeyError(sid)

    monkeypatch.setattr(app_store, 'create_room', broken_create_room)
    sio = sio_client_factory()
    sio.emit('create-room', {'nickname': 'Alice'})
    assert drain(sio)['error'] == [{'message': 'Failed to create room', 'code': 'InvalidState'}]


def test_lobby_intents_need_a_room(sio_client_factory):
    sio = sio_client_factory()
    sio.emit('player-ready')
    assert drain(sio)['error'][0] == {'message': 'Not in a room', 'code': 'NotFound'}


def test_ready_and_start(duel):
    duel.alice.emit('player-ready')
    duel.bob.emit('player-ready')
    alice_events = drain(duel.alice)
    assert alice_events['ready-changed'] == [
        {'playerId': duel.alice_id, 'ready': True},
        {'playerId': duel.bob_id, 'ready': True},
    ]
    assert alice_events['can-start'] == [{'canStart': True}]

    duel.bob.emit('start-game')
    assert drain(duel.bob)['error'][0]['code'] == 'Forbidden'

    duel.alice.emit('start-game')
    for sio in (duel.alice, duel.bob):
        started = drain(sio)['game-started'][0]
        assert started['difficulty'] == 'beginner'
        assert started['boardSize'] == {'width': 9, 'height': 9}
        assert started['mineCount'] == 10


def test_move_routing_keeps_boards_private(duel, sio_client_factory):
    spectator = sio_client_factory()
    spectator.emit('spectate-room', {'roomCode': duel.code, 'nickname': 'Sam'})
    _start(duel)
    for sio in (duel.alice, duel.bob, spectator):
        drain(sio)

    duel.bob.emit('cell-click', {'x': 4, 'y': 4})

    update = drain(duel.bob)['board-update'][0]
    assert update['gameOver'] is False
    assert len(update['playerView']) == 9
    assert {'x': 4, 'y': 4, 'adjacentMines': 0, 'isMine': False} in update['cells']

    for watcher in (duel.alice, spectator):
        events = drain(watcher)
        assert 'board-update' not in events
        opponent = events['opponent-update'][0]
        assert set(opponent) == {'playerId', 'progress', 'stats'}
        assert opponent['playerId'] == duel.bob_id
        assert opponent['stats'] == {'clicks': 1, 'flags': 0}
        assert opponent['progress']['revealed'] == len(update['cells'])


def test_flag_update(duel, app_store):
    _start(duel)
    duel.alice.emit('cell-click', {'x': 0, 'y': 0})
    drain(duel.alice)
    drain(duel.bob)
    mine_x, mine_y = sorted(app_store.rooms[duel.code].players[0].board.mines)[0]

    duel.alice.emit('cell-flag', {'x': mine_x, 'y': mine_y})

    update = drain(duel.alice)['board-update'][0]
    assert update['cells'] == [{'x': mine_x, 'y': mine_y, 'flagged': True}]
    assert drain(duel.bob)['opponent-update'][0]['stats']['flags'] == 1


def test_move_before_start_is_reported(duel):
    duel.alice.emit('cell-click', {'x': 0, 'y': 0})
    assert drain(duel.alice)['error'][0] == {'message': 'Game not in progress', 'code': 'InvalidState'}


def test_moves_outside_a_room_are_ignored(sio_client_factory):
    sio = sio_client_factory()
    sio.emit('cell-click', {'x': 0, 'y': 0})
    sio.emit('cell-chord', {'x': 0, 'y': 0})
    assert drain(sio) == {}


def test_malformed_coordinates_are_noops(duel):
    _start(duel)
    drain(duel.alice)
    drain(duel.bob)
    duel.alice.emit('cell-click', {'x': 'left', 'y': 99})
    assert drain(duel.alice) == {}
    assert drain(duel.bob) == {}


def test_mine_hit_ends_the_game(duel, app_store):
    _start(duel)
    duel.bob.emit('cell-click', {'x': 4, 'y': 4})
    drain(duel.alice)
    drain(duel.bob)
    mine_x, mine_y = sorted(app_store.rooms[duel.code].players[0].board.mines)[0]

    duel.alice.emit('cell-click', {'x': mine_x, 'y': mine_y})

    alice_events = drain(duel.alice)
    assert alice_events['board-update'][0]['gameOver'] is True
    assert alice_events['board-update'][0]['won'] is False
    for over in (alice_events['game-over'][0], drain(duel.bob)['game-over'][0]):
        assert over['winner'] == duel.bob_id
        assert over['reason'] == 'hit_mine'
        assert all(p['fullBoard'] for p in over['players'])

    # The room is finished: further moves are rejected
    duel.bob.emit('cell-click', {'x': mine_x, 'y': mine_y})
    assert drain(duel.bob)['error'][0]['code'] == 'InvalidState'


def test_invariant_violation_is_reported_as_invalid_state(duel, flask_app, app_store):
    flask_app.config['STRICT_INVARIANTS'] = False
    _start(duel)
    drain(duel.alice)
    drain(duel.bob)
    app_store.rooms[duel.code].players[0].board = None

    duel.alice.emit('cell-click', {'x': 0, 'y': 0})

    assert drain(duel.alice)['error'] == [{'message': 'Failed to reveal cell', 'code': 'InvalidState'}]
    assert drain(duel.bob) == {}


def test_invariant_violation_propagates_when_strict(duel, app_store):
    _start(duel)
    app_store.rooms[duel.code].players[0].board = None
    with pytest.raises(InvariantViolation):
        duel.alice.emit('cell-click', {'x': 0, 'y': 0})


def test_disconnect_mid_game_forfeits(duel, app_store):
    _start(duel)
    drain(duel.alice)

    duel.bob.disconnect()

    events = drain(duel.alice)
    left = events['player-left'][0]
    assert left['playerId'] == duel.bob_id
    assert [p['id'] for p in left['room']['players']] == [duel.alice_id]
    over = events['game-over'][0]
    assert over['winner'] == duel.alice_id
    assert over['reason'] == 'opponent_left'
    assert app_store.rooms[duel.code].status == 'finished'


def test_rematch(duel, app_store):
    duel.alice.emit('set-difficulty', {'difficulty': 'intermediate'})
    _start(duel)
    duel.alice.emit('request-rematch')
    assert drain(duel.alice)['error'][-1]['code'] == 'InvalidState'

    duel.alice.emit('cell-click', {'x': 0, 'y': 0})
    mine_x, mine_y = sorted(app_store.rooms[duel.code].players[1].board.mines)[0]
    duel.bob.emit('cell-click', {'x': mine_x, 'y': mine_y})
    drain(duel.alice)
    drain(duel.bob)

    duel.bob.emit('request-rematch')
    for sio in (duel.alice, duel.bob):
        room = drain(sio)['rematch-started'][0]['room']
        assert room['code'] == duel.code
        assert room['status'] == 'waiting'
        assert room['difficulty'] == 'intermediate'
        assert all(not p['ready'] for p in room['players'])


def test_spectator_join_and_leave(duel, sio_client_factory):
    spectator = sio_client_factory()
    spectator.emit('spectate-room', {'roomCode': duel.code, 'nickname': 'Sam'})
    events = drain(spectator)
    assert events['spectate-joined'][0]['spectatorView'] is None
    assert events['spectator-joined'][0]['count'] == 1
    assert drain(duel.alice)['spectator-joined'][0]['spectator']['nickname'] == 'Sam'

    spectator.emit('leave-room')
    assert drain(duel.bob)['spectator-left'][0]['count'] == 0


def test_host_leaving_transfers_host(duel):
    duel.alice.emit('leave-room')
    left = drain(duel.bob)['player-left'][0]
    assert left['playerId'] == duel.alice_id
    assert left['room']['host'] == duel.bob_id
    assert 'game-over' not in drain(duel.bob)


def test_last_player_leaving_deletes_room(sio_client_factory, client):
    alice = sio_client_factory()
    alice.emit('create-room', {'nickname': 'Alice'})
    code = drain(alice)['room-created'][0]['roomCode']
    assert client.get(f'/api/rooms/{code}').status_code == 200

    alice.emit('leave-room')
    assert client.get(f'/api/rooms/{code}').status_code == 404
