"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth/User
  2xxx: Balance
  5xxx: Position
  6xxx: Distribution
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth/User ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid or expired token", 401)


class AccountDisabledError(AppError):
    def __init__(self) -> None:
        super().__init__(1004, "Account is disabled", 403)


class AdminRequiredError(AppError):
    def __init__(self) -> None:
        super().__init__(1006, "Admin access required", 403)


class InvalidCronSecretError(AppError):
    def __init__(self) -> None:
        super().__init__(1007, "Invalid trigger credentials", 401)


# --- 2xxx: Balance ---

class BalanceUpdateError(AppError):
    def __init__(self, owner_id: str) -> None:
        super().__init__(2003, f"Balance update returned no row for owner {owner_id}", 500)


# --- 5xxx: Position ---

class PositionNotFoundError(AppError):
    def __init__(self, position_id: str) -> None:
        super().__init__(5001, f"Position not found: {position_id}", 404)


class PositionNotActiveError(AppError):
    def __init__(self, position_id: str, status: str) -> None:
        super().__init__(5002, f"Position {position_id} is not ACTIVE (status={status})", 422)


class PositionNotExpiredError(AppError):
    def __init__(self, position_id: str, elapsed: int, total: int) -> None:
        super().__init__(
            5003,
            f"Position {position_id} has not reached its duration: {elapsed}/{total} periods",
            422,
        )


class PositionAccessDeniedError(AppError):
    def __init__(self, position_id: str) -> None:
        super().__init__(5004, f"Position {position_id} belongs to another user", 403)


# --- 6xxx: Distribution ---

class PlanMetadataError(AppError):
    def __init__(self, position_id: str, detail: str) -> None:
        super().__init__(6001, f"Invalid plan metadata for position {position_id}: {detail}", 422)


class IncompleteDistributionError(AppError):
    def __init__(self, position_id: str, distributed: int, total: int) -> None:
        super().__init__(
            6002,
            f"Position {position_id} has {distributed}/{total} periods distributed; "
            "refusing to complete",
            409,
        )


class InvalidPeriodKindError(AppError):
    def __init__(self, value: str) -> None:
        super().__init__(6003, f"Unknown period kind: {value} (expected daily or hourly)", 422)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class StorageUnavailableError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(9003, f"Storage unavailable: {detail}", 503)
