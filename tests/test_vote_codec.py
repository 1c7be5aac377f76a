import random

import pytest
from eth_utils import keccak

from rpgf.errors import HashMismatch, InvalidSignature, InvalidVotes
from rpgf.vote_codec import (
    PublishRequest,
    Vote,
    canonicalize,
    hash_votes,
    js_number_text,
    parse_votes,
    verify_publish_request,
)


def test_canonical_form_matches_json_stringify():
    votes = parse_votes([{"projectId": "p1", "amount": 100}, {"projectId": "p2", "amount": 2.5}])
    assert canonicalize(votes) == b'[{"projectId":"p1","amount":100},{"projectId":"p2","amount":2.5}]'


def test_integral_floats_are_written_as_integers():
    assert canonicalize([Vote("p1", 100.0)]) == canonicalize([Vote("p1", 100)])


@pytest.mark.parametrize("amount, text", [
    (0.00001, "0.00001"),
    (0.000001, "0.000001"),
    (1e-7, "1e-7"),
    (2.5e-7, "2.5e-7"),
    (123.456, "123.456"),
    (1e20, "100000000000000000000"),
    (1e21, "1e+21"),
    (10**21, "1e+21"),
    (1.5e22, "1.5e+22"),
    (2**53 - 1, "9007199254740991"),
    (0.0, "0"),
])
def test_amounts_use_javascript_number_text(amount, text):
    assert js_number_text(amount) == text
    expected = '[{"projectId":"p1","amount":' + text + "}]"
    assert canonicalize([Vote("p1", amount)]) == expected.encode("utf-8")


def test_project_ids_are_json_escaped():
    assert canonicalize([Vote('a"b\\ü', 1)]) == '[{"projectId":"a\\"b\\\\ü","amount":1}]'.encode("utf-8")


def test_field_order_is_fixed_regardless_of_input_key_order():
    a = parse_votes([{"amount": 5, "projectId": "p1"}])
    b = parse_votes([{"projectId": "p1", "amount": 5}])
    assert canonicalize(a) == canonicalize(b)


def test_hash_is_keccak_of_canonical_bytes():
    votes = parse_votes([{"projectId": "p1", "amount": 1}])
    h = hash_votes(votes)
    assert h == "0x" + keccak(canonicalize(votes)).hex()
    assert len(bytes.fromhex(h[2:])) == 32


def test_empty_vote_list_hashes():
    assert hash_votes([]) == "0x" + keccak(b"[]").hex()


@pytest.mark.parametrize("bad", [
    {"projectId": "", "amount": 1},
    {"projectId": "p1", "amount": -1},
    {"projectId": "p1", "amount": True},
    {"projectId": "p1", "amount": "10"},
    {"projectId": "p1", "amount": float("nan")},
    {"projectId": "p1", "amount": float("inf")},
    "p1",
])
def test_parse_votes_rejects_bad_votes(bad):
    with pytest.raises(InvalidVotes):
        parse_votes([bad])


def _random_votes(rng: random.Random):
    n = rng.randint(1, 8)
    pids = rng.sample([f"p{i}" for i in range(30)], n)
    return [Vote(pid, rng.choice([rng.randint(0, 500), round(rng.uniform(0, 500), 3)])) for pid in pids]


def _mutate(rng: random.Random, votes):
    v = list(votes)
    kind = rng.choice(["reorder", "amount", "project"])
    if kind == "reorder" and len(v) > 1:
        i, j = rng.sample(range(len(v)), 2)
        v[i], v[j] = v[j], v[i]
    elif kind == "amount":
        i = rng.randrange(len(v))
        v[i] = Vote(v[i].project_id, v[i].amount + rng.choice([1, 0.5, 17]))
    else:
        i = rng.randrange(len(v))
        v[i] = Vote(v[i].project_id + "x", v[i].amount)
    return v


def test_hash_changes_under_random_mutation():
    rng = random.Random(20261019)
    for _ in range(500):
        votes = _random_votes(rng)
        mutated = _mutate(rng, votes)
        if mutated == votes:
            continue
        assert hash_votes(votes) != hash_votes(mutated)


def test_hash_is_deterministic():
    votes = [Vote("p1", 10), Vote("p2", 0.25)]
    assert hash_votes(votes) == hash_votes(list(votes))


def test_verify_accepts_matching_hash_and_signature(voter_a, sign):
    raw = [{"projectId": "p1", "amount": 10}, {"projectId": "p2", "amount": 5}]
    req = sign(voter_a, raw, round=2)
    verify_publish_request(
        claimed_hash=req.hashed_votes,
        votes=parse_votes(raw),
        signature=req.signature,
        signer=voter_a.address.lower(),
        round=2,
        total_votes=req.total_votes,
        project_count=req.project_count,
        chain_id=req.chain_id,
    )


def test_tampered_votes_fail_with_hash_mismatch(voter_a, sign):
    raw = [{"projectId": "p1", "amount": 10}]
    req = sign(voter_a, raw)
    tampered = parse_votes([{"projectId": "p1", "amount": 11}])
    with pytest.raises(HashMismatch):
        verify_publish_request(
            claimed_hash=req.hashed_votes,
            votes=tampered,
            signature=req.signature,
            signer=voter_a.address,
            round=1,
            total_votes=req.total_votes,
            project_count=req.project_count,
            chain_id=req.chain_id,
        )


def test_signature_by_someone_else_is_rejected(voter_a, voter_b, sign):
    raw = [{"projectId": "p1", "amount": 10}]
    req = sign(voter_b, raw)
    with pytest.raises(InvalidSignature):
        verify_publish_request(
            claimed_hash=req.hashed_votes,
            votes=parse_votes(raw),
            signature=req.signature,
            signer=voter_a.address,
            round=1,
            total_votes=req.total_votes,
            project_count=req.project_count,
            chain_id=req.chain_id,
        )


def test_signature_is_round_scoped(voter_a, sign):
    raw = [{"projectId": "p1", "amount": 10}]
    req = sign(voter_a, raw, round=1)
    with pytest.raises(InvalidSignature):
        verify_publish_request(
            claimed_hash=req.hashed_votes,
            votes=parse_votes(raw),
            signature=req.signature,
            signer=voter_a.address,
            round=2,
            total_votes=req.total_votes,
            project_count=req.project_count,
            chain_id=req.chain_id,
        )


def test_summary_fields_are_bound_by_signature(voter_a, sign):
    raw = [{"projectId": "p1", "amount": 10}]
    req = sign(voter_a, raw)
    with pytest.raises(InvalidSignature):
        verify_publish_request(
            claimed_hash=req.hashed_votes,
            votes=parse_votes(raw),
            signature=req.signature,
            signer=voter_a.address,
            round=1,
            total_votes=req.total_votes + 1,
            project_count=req.project_count,
            chain_id=req.chain_id,
        )


def test_wrong_chain_is_rejected_when_expected_chain_set(voter_a, sign):
    raw = [{"projectId": "p1", "amount": 10}]
    req = sign(voter_a, raw, chain_id=1)
    with pytest.raises(InvalidSignature):
        verify_publish_request(
            claimed_hash=req.hashed_votes,
            votes=parse_votes(raw),
            signature=req.signature,
            signer=voter_a.address,
            round=1,
            total_votes=req.total_votes,
            project_count=req.project_count,
            chain_id=req.chain_id,
            expected_chain_id=314,
        )


def test_malformed_signature_is_invalid_signature(voter_a, sign):
    raw = [{"projectId": "p1", "amount": 10}]
    req = sign(voter_a, raw)
    with pytest.raises(InvalidSignature):
        verify_publish_request(
            claimed_hash=req.hashed_votes,
            votes=parse_votes(raw),
            signature="0xdeadbeef",
            signer=voter_a.address,
            round=1,
            total_votes=req.total_votes,
            project_count=req.project_count,
            chain_id=req.chain_id,
        )


def test_publish_request_from_wire_shape():
    req = PublishRequest.from_dict({
        "signature": "0xabc",
        "chainId": 314,
        "message": {"total_votes": "15", "project_count": 2, "hashed_votes": "0x01"},
    })
    assert req.total_votes == 15
    assert req.to_dict()["message"]["hashed_votes"] == "0x01"
    with pytest.raises(InvalidVotes):
        PublishRequest.from_dict({"signature": "0xabc", "chainId": 1, "message": {"total_votes": 1}})
    with pytest.raises(InvalidVotes):
        PublishRequest.from_dict({
            "signature": "0xabc",
            "chainId": 1,
            "message": {"total_votes": 1.5, "project_count": 1, "hashed_votes": "0x"},
        })
