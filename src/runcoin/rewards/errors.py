"""Reward engine exceptions, mapped to JSON error responses by the global handler."""

from __future__ import annotations


class RewardError(Exception):
    """Base error with an HTTP status and a machine-readable code."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidRewardInput(RewardError, ValueError):
    status_code = 400
    code = "invalid_input"


class InvalidActivityError(InvalidRewardInput):
    code = "invalid_activity"


class ForbiddenPrincipalError(RewardError):
    status_code = 403
    code = "forbidden"


class RunNotFoundError(RewardError):
    status_code = 404
    code = "run_not_found"


class RunAlreadyFinishedError(RewardError):
    status_code = 409
    code = "run_already_finished"


class SupplyConflictError(RewardError):
    """The economy record kept changing underneath every supply write attempt."""

    status_code = 409
    code = "supply_conflict"
