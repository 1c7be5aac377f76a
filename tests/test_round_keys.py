import pytest

from rpgf.round_keys import RoundKey, belongs_to_round, scope_key, unscope_key


def test_round_one_is_unprefixed():
    assert scope_key(1, "0xabc") == "0xabc"
    assert unscope_key("0xabc") == (1, "0xabc")


def test_later_rounds_are_prefixed():
    assert scope_key(2, "0xabc") == "2-0xabc"
    assert scope_key(12, "0xabc") == "12-0xabc"
    assert unscope_key("12-0xabc") == (12, "0xabc")


@pytest.mark.parametrize("round", [1, 2, 3, 10, 250])
@pytest.mark.parametrize("voter", ["0xAbC", "0x0000000000000000000000000000000000000001", "alice-bob"])
def test_scope_and_unscope_are_inverses(round, voter):
    key = scope_key(round, voter)
    assert unscope_key(key) == (round, voter)
    assert RoundKey.decode(key).encode() == key


def test_round_one_id_that_looks_prefixed_is_rejected():
    with pytest.raises(ValueError):
        scope_key(1, "2-0xabc")


def test_invalid_rounds_rejected():
    with pytest.raises(ValueError):
        RoundKey(round=0, voter_id="0xabc")
    with pytest.raises(ValueError):
        RoundKey(round=2, voter_id="")


def test_belongs_to_round_is_strict():
    assert belongs_to_round("0xabc", 1)
    assert not belongs_to_round("0xabc", 2)
    assert belongs_to_round("2-0xabc", 2)
    assert not belongs_to_round("2-0xabc", 1)
    assert not belongs_to_round("2-0xabc", 12)
    assert not belongs_to_round("0-0xabc", 1)
