import os


def _env_flag(name, default='0'):
    return os.environ.get(name, default).lower() in ('1', 'true', 'yes')


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Comma separated list of origins the browser client may connect from
    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            'CORS_ALLOWED_ORIGINS',
            'http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173',
        ).split(',')
        if origin.strip()
    ]
    SOCKETIO_NAMESPACE = os.environ.get('SOCKETIO_NAMESPACE', '/')
    # Room limits
    MAX_SPECTATORS = int(os.environ.get('MAX_SPECTATORS', '10'))
    ROOM_CODE_LENGTH = int(os.environ.get('ROOM_CODE_LENGTH', '6'))
    # Re-raise internal invariant violations instead of reporting InvalidState
    STRICT_INVARIANTS = _env_flag('STRICT_INVARIANTS')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
