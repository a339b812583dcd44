"""Unit tests for auth/passwords.py."""

from auth.passwords import PasswordVerifier


def test_hash_then_verify(hasher):
    verifier = PasswordVerifier(hasher)
    stored = verifier.hash("s3cret-pass")
    assert stored != "s3cret-pass"
    assert verifier.verify("s3cret-pass", stored) is True
    assert verifier.verify("wrong-pass", stored) is False


def test_hashes_are_salted(hasher):
    assert hasher.hash("same") != hasher.hash("same")


def test_hasher_uses_configured_cost(hasher):
    assert hasher.hash("x").startswith("$2b$04$")


def test_empty_or_corrupt_hash_is_false(hasher):
    verifier = PasswordVerifier(hasher)
    assert verifier.verify("anything", "") is False
    assert verifier.verify("anything", None) is False
    assert verifier.verify("anything", "not-a-bcrypt-hash") is False


def test_dummy_comparison_runs_against_dummy_hash(hasher, monkeypatch):
    seen = []
    monkeypatch.setattr(hasher, "compare", lambda p, h: seen.append(h) or False)
    PasswordVerifier(hasher).verify_dummy("guess")
    assert seen == [hasher.dummy_hash]
