class MultiplayerError(Exception):
    """Base for failures reported synchronously to the acting caller."""

    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'success': False, 'error': self.message}


class NotFound(MultiplayerError):
    status_code = 404


class InvalidState(MultiplayerError):
    status_code = 409


class Forbidden(MultiplayerError):
    status_code = 403


class Precondition(MultiplayerError):
    status_code = 400


class Full(MultiplayerError):
    status_code = 409


class AuthError(MultiplayerError):
    status_code = 401


class ExternalUnavailable(MultiplayerError):
    status_code = 503
