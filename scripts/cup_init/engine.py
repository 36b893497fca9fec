"""Reconciliation pipeline for the deployer identity.

Five stages run in order against an explicit RunContext:

  1. resolve_administrator  - load admin keys, configure the IAM session
  2. ensure_identity        - IAM user exists; converge purges old keys
  3. ensure_policies        - required policies attached, in order
  4. resolve_access_key     - verify reads the single key, converge mints one
  5. reconcile_profile      - exactly one deployer profile matching the key

A stage returns a verdict to halt the run or None to continue. In verify
mode every drift verdict halts; in converge mode drift triggers the
corrective action and the run ends InSync or with a fatal error.
"""

from __future__ import annotations

import logging
import time
import traceback
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Sequence

from scripts.cup_init.config import CupConfig
from scripts.cup_init.errors import ReconcileError
from scripts.cup_init.identity import IamIdentityProvider
from scripts.cup_init.models import AccessKey, AdministratorProfile, DeployerProfile, Mode
from scripts.cup_init.policy import (
    Drift,
    FatalError,
    InSync,
    Uninitialized,
    Verdict,
    identity_verdict,
    key_count_verdict,
    policy_verdict,
    profile_count_verdict,
    profile_match_verdict,
)
from scripts.cup_init.retry import purge_until_empty, retry_until

logger = logging.getLogger("cup_init.engine")


class CredentialStore(Protocol):
    def find_administrator(self) -> Optional[AdministratorProfile]: ...
    def count_deployer_profiles(self) -> int: ...
    def find_deployer_profile(self) -> Optional[DeployerProfile]: ...
    def delete_all_deployer_profiles(self) -> int: ...
    def insert_deployer_profile(self, profile: DeployerProfile) -> None: ...
    def record_run(self, **fields) -> None: ...


class IdentityProvider(Protocol):
    def get_user(self, name: str) -> Optional[dict]: ...
    def create_user(self, name: str) -> dict: ...
    def list_access_keys(self, name: str) -> Sequence[AccessKey]: ...
    def delete_access_key(self, name: str, access_key_id: str) -> None: ...
    def create_access_key(self, name: str) -> AccessKey: ...
    def list_attached_policies(self, name: str) -> Sequence[str]: ...
    def attach_policy(self, name: str, arn: str) -> None: ...


ProviderFactory = Callable[[AdministratorProfile], IdentityProvider]


@dataclass
class RunContext:
    """State carried from one stage to the next within a single run."""

    mode: Mode
    admin: Optional[AdministratorProfile] = None
    provider: Optional[IdentityProvider] = None
    key: Optional[AccessKey] = None
    run_id: Optional[str] = None

    @property
    def converging(self) -> bool:
        return self.mode is Mode.CONVERGE


class ReconciliationEngine:
    """Drives the pipeline against a credential store and an IAM provider."""

    def __init__(
        self,
        config: CupConfig,
        store: CredentialStore,
        provider_factory: ProviderFactory = IamIdentityProvider.from_administrator,
        sleep: Callable[[float], None] = time.sleep,
        track_runs: bool = True,
    ) -> None:
        self.config = config
        self.store = store
        self.identity = config.identity
        self._provider_factory = provider_factory
        self._sleep = sleep
        self._track_runs = track_runs

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, mode: Mode) -> Verdict:
        """Run the pipeline; failures become FatalError.

        Only converge runs that got past the administrator lookup are
        recorded, as a single row once the verdict is known. Verify stays
        read-only against the database.
        """
        ctx = RunContext(mode=mode, run_id=str(uuid.uuid4()))
        started_at = datetime.now(timezone.utc)
        try:
            verdict = self.reconcile(ctx)
        except Exception as exc:
            logger.error(
                "Reconciliation failed: %s", exc, exc_info=True,
                extra={"mode": mode.value, "run_id": ctx.run_id},
            )
            verdict = FatalError(exc)
            self._record_run(
                ctx, started_at, verdict,
                error_message=str(exc)[:1000],
                error_detail={"traceback": traceback.format_exc()},
            )
            return verdict

        self._record_run(ctx, started_at, verdict)
        logger.info(
            "Reconciliation finished: %s", verdict.describe(),
            extra={"mode": mode.value, "run_id": ctx.run_id, "verdict": verdict.status},
        )
        return verdict

    def reconcile(self, ctx: RunContext) -> Verdict:
        """Run the stages in order. Provider and store errors propagate."""
        stages = (
            ("resolve_administrator", self._resolve_administrator),
            ("ensure_identity", self._ensure_identity),
            ("ensure_policies", self._ensure_policies),
            ("resolve_access_key", self._resolve_access_key),
            ("reconcile_profile", self._reconcile_profile),
        )
        for name, stage in stages:
            logger.info(
                "Running stage %s", name,
                extra={"stage": name, "mode": ctx.mode.value, "run_id": ctx.run_id},
            )
            verdict = stage(ctx)
            if verdict is not None:
                return verdict
        raise ReconcileError("pipeline finished without a verdict")

    def _record_run(self, ctx: RunContext, started_at: datetime, verdict: Verdict, **error) -> None:
        if not (self._track_runs and ctx.converging and ctx.admin):
            return
        try:
            self.store.record_run(
                run_id=ctx.run_id,
                mode=ctx.mode.value,
                status=verdict.status,
                started_at=started_at,
                reason=verdict.describe(),
                access_key_id=ctx.key.access_key_id if ctx.key else None,
                **error,
            )
        except Exception:
            # The verdict stands: the identity and profile are already written
            logger.exception("Could not record run", extra={"run_id": ctx.run_id})

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _resolve_administrator(self, ctx: RunContext) -> Optional[Verdict]:
        admin = self.store.find_administrator()
        if admin is None:
            return Uninitialized()
        ctx.admin = admin
        ctx.provider = self._provider_factory(admin)
        return None

    def _ensure_identity(self, ctx: RunContext) -> Optional[Verdict]:
        provider, name = ctx.provider, self.identity.deployer_username
        verdict = identity_verdict(provider.get_user(name))

        if isinstance(verdict, Drift):
            if not ctx.converging:
                return verdict
            provider.create_user(name)
            return None

        if ctx.converging:
            # Secrets can't be read back, so every existing key is stale
            deleted = purge_until_empty(
                lambda: provider.list_access_keys(name),
                lambda key: provider.delete_access_key(name, key.access_key_id),
                description=f"purge access keys of {name}",
                retry=self.config.retry,
                sleep=self._sleep,
            )
            logger.info("Purged %d access keys", deleted, extra={"user_name": name})
        return None

    def _ensure_policies(self, ctx: RunContext) -> Optional[Verdict]:
        provider, name = ctx.provider, self.identity.deployer_username

        for arn in self.identity.required_policy_arns:
            verdict = policy_verdict(provider.list_attached_policies(name), arn)
            if isinstance(verdict, InSync):
                continue
            if not ctx.converging:
                return verdict

            provider.attach_policy(name, arn)
            retry_until(
                lambda arn=arn: arn in provider.list_attached_policies(name),
                description=f"attachment of {arn}",
                retry=self.config.retry,
                sleep=self._sleep,
            )
        return None

    def _resolve_access_key(self, ctx: RunContext) -> Optional[Verdict]:
        provider, name = ctx.provider, self.identity.deployer_username

        if ctx.converging:
            ctx.key = provider.create_access_key(name)
            return None

        keys = provider.list_access_keys(name)
        verdict = key_count_verdict(keys)
        if isinstance(verdict, Drift):
            return verdict
        ctx.key = keys[0]
        return None

    def _reconcile_profile(self, ctx: RunContext) -> Verdict:
        count = self.store.count_deployer_profiles()

        if count > 1:
            if not ctx.converging:
                return profile_count_verdict(count)
            retry_until(
                self._delete_duplicate_profiles,
                description="purge duplicate deployer profiles",
                retry=self.config.retry,
                sleep=self._sleep,
            )
            count = self.store.count_deployer_profiles()

        if count == 1:
            profile = self.store.find_deployer_profile()
            verdict = profile_match_verdict(profile, ctx.key.access_key_id)
            if isinstance(verdict, InSync):
                return InSync("deployer profile matches the live access key")
            if not ctx.converging:
                return verdict
            self.store.delete_all_deployer_profiles()
        elif not ctx.converging:
            return profile_count_verdict(count)

        self._insert_profile(ctx)
        return InSync("deployer profile written for the new access key")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _delete_duplicate_profiles(self) -> bool:
        self.store.delete_all_deployer_profiles()
        return self.store.count_deployer_profiles() <= 1

    def _insert_profile(self, ctx: RunContext) -> None:
        if not ctx.key or not ctx.key.secret_access_key:
            raise ReconcileError("no freshly minted access key to persist")
        self.store.insert_deployer_profile(DeployerProfile(
            username=self.identity.deployer_username,
            platform=self.identity.platform,
            role=self.identity.deployer_role,
            access_key_id=ctx.key.access_key_id,
            secret_access_key=ctx.key.secret_access_key,
            preferred_region=ctx.admin.preferred_region,
        ))
