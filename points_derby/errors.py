"""
Failure taxonomy shared by the race engine, the store adapters and the bot.

Every error carries a machine-checkable ``kind`` and a human readable message.
``retryable`` is only True when the same call may succeed later unchanged.
"""


class DerbyError(Exception):
    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"ok": False, "kind": self.kind, "error": self.message, "retryable": self.retryable}


class InvalidWager(DerbyError):
    kind = "invalid_wager"


class InsufficientPoints(DerbyError):
    kind = "insufficient_points"


class NotFound(DerbyError):
    kind = "not_found"


class Forbidden(DerbyError):
    kind = "forbidden"


class TooEarly(DerbyError):
    kind = "too_early"


class PolicyViolation(DerbyError):
    """Item rules: own pick targeted, race not running, once-per-race reuse..."""

    kind = "policy_violation"


class Unauthenticated(DerbyError):
    kind = "unauthenticated"


class StorageFailure(DerbyError):
    kind = "storage_failure"
    retryable = True
