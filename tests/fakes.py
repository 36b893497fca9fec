"""In-memory credential store and IAM provider that record every call."""

from __future__ import annotations

import itertools
from typing import Optional

from botocore.exceptions import ClientError

from scripts.cup_init.models import AccessKey, AdministratorProfile, DeployerProfile

USER = "clio-up"
ADMIN_POLICY = "arn:aws:iam::aws:policy/AdministratorAccess"

PROVIDER_MUTATIONS = {"create_user", "delete_access_key", "create_access_key", "attach_policy"}
STORE_MUTATIONS = {"insert_deployer_profile", "delete_all_deployer_profiles", "record_run"}


class FakeIdentityProvider:
    def __init__(self, user_exists: bool = True, keys=(), policies=(), attach_lag: int = 0, delete_lag: int = 0) -> None:
        self.user_exists = user_exists
        self.keys: list[str] = list(keys)
        self.policies: list[str] = list(policies)
        self.attach_lag = attach_lag
        self.delete_lag = delete_lag
        # Deleted keys that listings keep showing for a while
        self._ghost_keys: dict[str, int] = {}
        self.calls: list[tuple] = []
        self._pending: dict[str, int] = {}
        self._ids = itertools.count(1)

    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in PROVIDER_MUTATIONS]

    def get_user(self, name: str) -> Optional[dict]:
        self.calls.append(("get_user", name))
        return {"UserName": name} if self.user_exists else None

    def create_user(self, name: str) -> dict:
        self.calls.append(("create_user", name))
        self.user_exists = True
        return {"UserName": name}

    def list_access_keys(self, name: str) -> list[AccessKey]:
        self.calls.append(("list_access_keys", name))
        listed = list(self._ghost_keys) + self.keys
        for key_id in list(self._ghost_keys):
            self._ghost_keys[key_id] -= 1
            if self._ghost_keys[key_id] == 0:
                del self._ghost_keys[key_id]
        return [AccessKey(access_key_id=k) for k in listed]

    def delete_access_key(self, name: str, access_key_id: str) -> None:
        self.calls.append(("delete_access_key", name, access_key_id))
        if access_key_id not in self.keys:
            raise ClientError(
                {"Error": {"Code": "NoSuchEntity", "Message": f"key {access_key_id} not found"}},
                "DeleteAccessKey",
            )
        self.keys.remove(access_key_id)
        if self.delete_lag:
            self._ghost_keys[access_key_id] = self.delete_lag

    def create_access_key(self, name: str) -> AccessKey:
        self.calls.append(("create_access_key", name))
        key_id = f"AKIANEW{next(self._ids):04d}"
        self.keys.append(key_id)
        return AccessKey(access_key_id=key_id, secret_access_key=f"secret-{key_id}")

    def list_attached_policies(self, name: str) -> list[str]:
        self.calls.append(("list_attached_policies", name))
        for arn in list(self._pending):
            if self._pending[arn] == 0:
                del self._pending[arn]
                self.policies.append(arn)
            else:
                self._pending[arn] -= 1
        return list(self.policies)

    def attach_policy(self, name: str, arn: str) -> None:
        self.calls.append(("attach_policy", name, arn))
        if self.attach_lag:
            self._pending[arn] = self.attach_lag
        else:
            self.policies.append(arn)


class FakeCredentialStore:
    def __init__(self, admin: Optional[AdministratorProfile] = None, profiles=()) -> None:
        self.admin = admin
        self.profiles: list[DeployerProfile] = list(profiles)
        self.calls: list[tuple] = []
        self.runs: list[dict] = []

    def mutations(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in STORE_MUTATIONS]

    def find_administrator(self) -> Optional[AdministratorProfile]:
        self.calls.append(("find_administrator",))
        return self.admin

    def count_deployer_profiles(self) -> int:
        self.calls.append(("count_deployer_profiles",))
        return len(self.profiles)

    def find_deployer_profile(self) -> Optional[DeployerProfile]:
        self.calls.append(("find_deployer_profile",))
        return self.profiles[0] if self.profiles else None

    def delete_all_deployer_profiles(self) -> int:
        self.calls.append(("delete_all_deployer_profiles",))
        deleted = len(self.profiles)
        self.profiles.clear()
        return deleted

    def insert_deployer_profile(self, profile: DeployerProfile) -> None:
        self.calls.append(("insert_deployer_profile", profile.access_key_id))
        self.profiles.append(profile)

    def record_run(self, **fields) -> None:
        self.calls.append(("record_run", fields["mode"], fields["status"]))
        self.runs.append(fields)


def deployer_profile(key_id: str, secret: str = "s3cret") -> DeployerProfile:
    return DeployerProfile(
        username=USER,
        platform="aws",
        role="cup-deployer",
        access_key_id=key_id,
        secret_access_key=secret,
        preferred_region="eu-west-2",
    )
