"""
Unit tests for the reward code pool
"""
import pytest

from moneykaki.core.errors import InsufficientInventory, InvalidCodesFormat
from moneykaki.services.code_pool import (
    RewardCode,
    parse_codes,
    dump_codes,
    available_quantity,
    allocate,
    add_codes,
    remove_code,
)


def test_parse_legacy_string_codes():
    """Plain string arrays read as unredeemed codes"""
    codes = parse_codes(["A", "B"])
    assert codes == [RewardCode("A"), RewardCode("B")]
    assert dump_codes(codes) == [
        {"code": "A", "is_redeemed": False},
        {"code": "B", "is_redeemed": False},
    ]


def test_parse_object_codes_keeps_flags():
    raw = [{"code": "A", "is_redeemed": True}, {"code": "B", "is_redeemed": False}]
    assert dump_codes(parse_codes(raw)) == raw


def test_parse_mixed_and_empty():
    assert parse_codes(None) == []
    assert parse_codes([]) == []
    codes = parse_codes(["A", {"code": "B", "is_redeemed": True}])
    assert available_quantity(codes) == 1


@pytest.mark.parametrize("raw", [
    "A,B",
    [1, 2],
    [{"is_redeemed": False}],
    [{"code": "A", "is_redeemed": "yes"}],
])
def test_parse_rejects_unknown_shapes(raw):
    with pytest.raises(InvalidCodesFormat):
        parse_codes(raw)


def test_allocate_takes_first_unredeemed_in_order():
    codes = parse_codes([
        {"code": "A", "is_redeemed": True},
        "B",
        "C",
        "D",
    ])
    updated, allocated = allocate(codes, 2)

    assert allocated == ["B", "C"]
    assert [c.is_redeemed for c in updated] == [True, True, True, False]
    # input untouched
    assert available_quantity(codes) == 3


def test_allocate_short_pool_reports_shortfall():
    codes = parse_codes(["A", {"code": "B", "is_redeemed": True}])
    with pytest.raises(InsufficientInventory) as exc:
        allocate(codes, 3)

    assert exc.value.details == {"needed": 3, "available": 1, "shortfall": 2}


def test_allocate_rejects_non_positive_quantity():
    with pytest.raises(ValueError):
        allocate(parse_codes(["A"]), 0)


def test_add_codes_skips_duplicates_and_blanks():
    codes = add_codes(parse_codes(["A"]), ["B", " A ", "", "B", "C"])
    assert [c.code for c in codes] == ["A", "B", "C"]


def test_remove_code():
    codes = parse_codes(["A", {"code": "B", "is_redeemed": True}])

    assert [c.code for c in remove_code(codes, "A")] == ["B"]
    with pytest.raises(ValueError):
        remove_code(codes, "B")
    with pytest.raises(KeyError):
        remove_code(codes, "Z")
