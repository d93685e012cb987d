# errors.py


class DairyError(Exception):
    """Base class for errors raised by the scheduling and billing core."""
    status_code = 400


class NotFound(DairyError):
    status_code = 404

    def __init__(self, kind, ident):
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = ident


class InvalidInput(DairyError):
    status_code = 400


class InvalidStateTransition(DairyError):
    status_code = 409


class ConcurrentModification(InvalidStateTransition):
    """Another operator changed the delivery after it was loaded."""


class PersistenceFailure(DairyError):
    status_code = 500
