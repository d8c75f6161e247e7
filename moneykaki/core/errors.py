from __future__ import annotations

from typing import Any


class MoneyKakiError(Exception):
    code = "error"
    status_code = 400
    # unexpected errors are logged and hidden behind a generic response
    expected = True

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.code, "message": self.message, **self.details}


class NotFound(MoneyKakiError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class AlreadyProcessed(MoneyKakiError):
    code = "already_processed"
    status_code = 409


class InvalidStateTransition(MoneyKakiError):
    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move from {current} to {target}", current=current, target=target)


class InsufficientInventory(MoneyKakiError):
    code = "insufficient_inventory"
    status_code = 409

    def __init__(self, needed: int, available: int):
        super().__init__(
            f"needs {needed} codes, only {available} available (short by {needed - available})",
            needed=needed,
            available=available,
            shortfall=needed - available,
        )


class InsufficientBalance(MoneyKakiError):
    code = "insufficient_balance"
    status_code = 402

    def __init__(self, needed: Any, available: Any, currency: str = "credits"):
        super().__init__(
            f"needs {needed} {currency}, has {available}",
            currency=currency,
            needed=needed,
            available=available,
        )


class NoCodesAvailable(MoneyKakiError):
    code = "no_codes_available"
    status_code = 400


class InvalidCodesFormat(MoneyKakiError):
    code = "invalid_codes_format"
    status_code = 500
    expected = False


class StoreError(MoneyKakiError):
    code = "store_error"
    status_code = 500
    expected = False
