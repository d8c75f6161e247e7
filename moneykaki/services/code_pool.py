# Older rows store codes as plain strings; writes always produce {"code", "is_redeemed"} objects.
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from moneykaki.core.errors import InsufficientInventory, InvalidCodesFormat


@dataclass(frozen=True)
class RewardCode:
    code: str
    is_redeemed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "is_redeemed": self.is_redeemed}


def parse_codes(raw: Any) -> list[RewardCode]:
    """Normalize a persisted ``codes`` value into RewardCode entries.

    ``None`` reads as an empty pool. Anything that is neither a plain string
    nor a ``{code, is_redeemed}`` object raises InvalidCodesFormat.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise InvalidCodesFormat("codes must be a list", found=type(raw).__name__)

    out: list[RewardCode] = []
    for i, item in enumerate(raw):
        if isinstance(item, str):
            out.append(RewardCode(code=item, is_redeemed=False))
        elif isinstance(item, dict) and isinstance(item.get("code"), str):
            flag = item.get("is_redeemed", False)
            if not isinstance(flag, bool):
                raise InvalidCodesFormat("is_redeemed must be a boolean", index=i)
            out.append(RewardCode(code=item["code"], is_redeemed=flag))
        else:
            raise InvalidCodesFormat("unrecognized code entry", index=i)
    return out


def dump_codes(codes: Iterable[RewardCode]) -> list[dict[str, Any]]:
    return [c.to_dict() for c in codes]


def available_quantity(codes: Iterable[RewardCode]) -> int:
    return sum(1 for c in codes if not c.is_redeemed)


def allocate(codes: list[RewardCode], quantity: int) -> tuple[list[RewardCode], list[str]]:
    """Take the first ``quantity`` unredeemed codes; returns (new pool, allocated codes)."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")
    available = available_quantity(codes)
    if available < quantity:
        raise InsufficientInventory(needed=quantity, available=available)

    allocated: list[str] = []
    updated: list[RewardCode] = []
    for c in codes:
        if not c.is_redeemed and len(allocated) < quantity:
            allocated.append(c.code)
            updated.append(RewardCode(code=c.code, is_redeemed=True))
        else:
            updated.append(c)
    return updated, allocated


def add_codes(codes: list[RewardCode], new_codes: Iterable[str]) -> list[RewardCode]:
    existing = {c.code for c in codes}
    out = list(codes)
    for code in new_codes:
        code = code.strip()
        if code and code not in existing:
            out.append(RewardCode(code=code))
            existing.add(code)
    return out


def remove_code(codes: list[RewardCode], code: str) -> list[RewardCode]:
    """Drop an unredeemed code. Redeemed codes stay: they belong to an assignment now."""
    for c in codes:
        if c.code == code:
            if c.is_redeemed:
                raise ValueError("code_already_redeemed")
            return [x for x in codes if x.code != code]
    raise KeyError(code)
