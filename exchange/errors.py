class ExchangeError(Exception):
    pass


class NotFoundError(ExchangeError):
    pass


class InvalidRequestError(ExchangeError):
    pass


class UnauthorizedError(ExchangeError):
    pass


class AlreadySettledError(ExchangeError):
    pass


class InsufficientPointsError(ExchangeError):
    pass


class StorageFailureError(ExchangeError):
    """Unexpected persistence failure. The call may or may not have been applied
    elsewhere, so callers re-read request status before retrying."""
