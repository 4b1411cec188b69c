from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from config import Config

socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    # app.logger is the "minesduel" logger, so this also covers the domain modules
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    allowed_origins = flask_app.config.get('CORS_ALLOWED_ORIGINS') or []
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # One session store per app; handed to the socket handlers and HTTP routes
    from minesduel.services.games.session_store import SessionStore
    store = SessionStore(
        max_spectators=flask_app.config.get('MAX_SPECTATORS', 10),
        code_length=flask_app.config.get('ROOM_CODE_LENGTH', 6),
    )
    flask_app.extensions['session_store'] = store

    from minesduel.main import main
    flask_app.register_blueprint(main)

    from minesduel.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from minesduel.socketio_events import register_socketio_handlers
    register_socketio_handlers(store, namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/'))

    return flask_app
