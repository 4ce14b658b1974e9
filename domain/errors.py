# domain/errors.py - Errors surfaced to API callers


class JourneyError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(JourneyError):
    status_code = 404


class InsufficientFundsError(JourneyError):
    status_code = 400
