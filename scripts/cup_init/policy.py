"""Drift decisions: observed cloud and database facts in, verdict out.

Nothing here performs I/O. The engine gathers the facts, asks for a
verdict, and decides what to do with it: halt in verify mode, correct in
converge mode.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from scripts.cup_init.models import AccessKey, DeployerProfile

IDENTITY_MISSING = "identity missing"
KEY_COUNT_MISMATCH = "key count mismatch"
DUPLICATE_PROFILES = "duplicate profiles"
STALE_CREDENTIAL_RECORD = "stale credential record"
NO_CREDENTIAL_RECORD = "no credential record"


@dataclass(frozen=True)
class InSync:
    detail: str = "in sync"
    exit_code = 0
    status = "IN_SYNC"

    def describe(self) -> str:
        return self.detail


@dataclass(frozen=True)
class Drift:
    reason: str
    exit_code = 0
    status = "DRIFT"

    def describe(self) -> str:
        return f"drift: {self.reason}"


@dataclass(frozen=True)
class Uninitialized:
    """No administrator profile yet: a valid state with nothing to do."""

    detail: str = "no administrator profile, nothing to do"
    exit_code = 0
    status = "UNINITIALIZED"

    def describe(self) -> str:
        return self.detail


@dataclass(frozen=True)
class FatalError:
    cause: BaseException
    exit_code = 1
    status = "FAILED"

    def describe(self) -> str:
        return f"fatal: {self.cause}"


Verdict = Union[InSync, Drift, Uninitialized, FatalError]


def policy_missing(arn: str) -> str:
    return f"policy missing: {arn}"


def identity_verdict(user: Optional[dict]) -> Verdict:
    return InSync() if user is not None else Drift(IDENTITY_MISSING)


def policy_verdict(attached: Sequence[str], arn: str) -> Verdict:
    return InSync() if arn in attached else Drift(policy_missing(arn))


def key_count_verdict(keys: Sequence[AccessKey]) -> Verdict:
    return InSync() if len(keys) == 1 else Drift(KEY_COUNT_MISMATCH)


def profile_count_verdict(count: int) -> Verdict:
    """Exactly one record is in sync; zero or many are drift."""
    if count > 1:
        return Drift(DUPLICATE_PROFILES)
    if count == 0:
        return Drift(NO_CREDENTIAL_RECORD)
    return InSync()


def profile_match_verdict(profile: Optional[DeployerProfile], key_id: str) -> Verdict:
    if profile is None:
        return Drift(NO_CREDENTIAL_RECORD)
    if profile.access_key_id != key_id:
        return Drift(STALE_CREDENTIAL_RECORD)
    return InSync()
