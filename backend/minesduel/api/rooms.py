from flask import Blueprint, current_app, jsonify

rooms = Blueprint('rooms', __name__)


def _store():
    return current_app.extensions['session_store']


@rooms.route('/<string:room_code>', methods=['GET'])
def get_room(room_code):
    """
    Returns the public room info: membership, readiness, difficulty and status.
    """
    info = _store().get_room_info(room_code.upper())
    if info is None:
        return jsonify({'error': 'Room not found'}), 404
    return jsonify(info)


@rooms.route('/<string:room_code>/spectate', methods=['GET'])
def get_spectator_view(room_code):
    """
    Returns per-player progress for a game in progress, or null between games.
    """
    code = room_code.upper()
    store = _store()
    if store.get_room_info(code) is None:
        return jsonify({'error': 'Room not found'}), 404
    return jsonify({'roomCode': code, 'spectatorView': store.get_spectator_view(code)})
