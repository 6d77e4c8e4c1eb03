from __future__ import annotations

from decimal import Decimal
from typing import Any


class CreditError(RuntimeError):
    code = "CREDIT_ERROR"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class AccountNotFound(CreditError):
    code = "ACCOUNT_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Account {user_id} not found")
        self.user_id = user_id


class InsufficientCredits(CreditError):
    code = "INSUFFICIENT_CREDITS"

    def __init__(self, *, available: Decimal, held: Decimal, required: Decimal) -> None:
        super().__init__(f"Insufficient credits: available {available}, held {held}, required {required}")
        self.available = available
        self.held = held
        self.required = required

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out.update(
            {
                "available": float(self.available),
                "held": float(self.held),
                "required": float(self.required),
            }
        )
        return out


class HoldConflict(CreditError):
    code = "HOLD_CONFLICT"

    def __init__(self, user_id: str, *, hold_id: str | None = None, held: Decimal | None = None) -> None:
        super().__init__(f"User {user_id} already has a pending paid operation")
        self.user_id = user_id
        self.hold_id = hold_id
        self.held = held

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["retryable"] = True
        if self.held is not None:
            out["held"] = float(self.held)
        return out


class LedgerWriteFailed(CreditError):
    code = "LEDGER_WRITE_FAILED"

    def __init__(self, message: str = "Ledger write failed", *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["retryable"] = True
        return out


class DuplicateSubmission(CreditError):
    code = "DUPLICATE_SUBMISSION"

    def __init__(self, operation: str, target: str) -> None:
        super().__init__(f"{operation} already submitted for {target}")
        self.operation = operation
        self.target = target

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out.update({"operation": self.operation, "target": self.target})
        return out


class ExternalProviderError(CreditError):
    code = "EXTERNAL_PROVIDER_FAILED"

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out.update({"operation": self.operation, "charged": False})
        return out
