"""Error taxonomy for room and board operations.

``SessionError`` subclasses are recoverable rejections of a single intent. The
session store raises them internally and converts them to structured
``{'success': False, 'error': ..., 'code': ...}`` results at its boundary, so
they never reach the transport layer as exceptions.
"""


class SessionError(Exception):
    code = 'SessionError'

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_result(self):
        return {'success': False, 'error': self.message, 'code': self.code}


class NotFound(SessionError):
    code = 'NotFound'


class Conflict(SessionError):
    code = 'Conflict'


class Forbidden(SessionError):
    code = 'Forbidden'


class InvalidState(SessionError):
    code = 'InvalidState'


class InvalidArgument(SessionError):
    code = 'InvalidArgument'


class ConfigurationError(ValueError):
    """Board dimensions and mine count cannot produce a playable board."""


class InvariantViolation(RuntimeError):
    """Internal state contradicts an assumption of the calling code path."""
