from flask import Blueprint, jsonify

from minesduel.models import now_ms
from minesduel.services.games.board import DIFFICULTIES

main = Blueprint('main', __name__)


@main.route('/api/health')
def health():
    return jsonify({'status': 'ok', 'timestamp': now_ms()})


@main.route('/api/difficulties')
def difficulties():
    return jsonify(DIFFICULTIES)
