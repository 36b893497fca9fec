from __future__ import annotations

from scripts.cup_init.models import AccessKey
from scripts.cup_init.policy import (
    Drift,
    FatalError,
    InSync,
    Uninitialized,
    identity_verdict,
    key_count_verdict,
    policy_verdict,
    profile_count_verdict,
    profile_match_verdict,
)

from tests.fakes import deployer_profile

ARN = "arn:aws:iam::aws:policy/AdministratorAccess"


def test_identity_verdict():
    assert identity_verdict({"UserName": "clio-up"}) == InSync()
    assert identity_verdict(None) == Drift("identity missing")


def test_policy_verdict_names_the_missing_arn():
    assert policy_verdict([ARN], ARN) == InSync()
    assert policy_verdict([], ARN) == Drift(f"policy missing: {ARN}")


def test_key_count_verdict():
    assert key_count_verdict([AccessKey("AKIA1")]) == InSync()
    assert key_count_verdict([]) == Drift("key count mismatch")
    assert key_count_verdict([AccessKey("AKIA1"), AccessKey("AKIA2")]) == Drift("key count mismatch")


def test_profile_count_verdict():
    assert profile_count_verdict(0) == Drift("no credential record")
    assert profile_count_verdict(1) == InSync()
    assert profile_count_verdict(4) == Drift("duplicate profiles")


def test_profile_match_verdict():
    assert profile_match_verdict(deployer_profile("AKIA1"), "AKIA1") == InSync()
    assert profile_match_verdict(deployer_profile("AKIAOLD"), "AKIA1") == Drift("stale credential record")
    assert profile_match_verdict(None, "AKIA1") == Drift("no credential record")


def test_exit_codes():
    assert InSync().exit_code == 0
    assert Drift("identity missing").exit_code == 0
    assert Uninitialized().exit_code == 0
    assert FatalError(RuntimeError("boom")).exit_code == 1


def test_describe():
    assert Drift("duplicate profiles").describe() == "drift: duplicate profiles"
    assert FatalError(RuntimeError("boom")).describe() == "fatal: boom"
    assert "nothing to do" in Uninitialized().describe()
