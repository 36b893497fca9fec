"""Records exchanged between the engine, the credential store and IAM."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Mode(str, Enum):
    VERIFY = "verify"
    CONVERGE = "converge"


@dataclass(frozen=True)
class AdministratorProfile:
    access_key_id: str
    secret_access_key: str = field(repr=False)
    preferred_region: str


@dataclass(frozen=True)
class DeployerProfile:
    username: str
    platform: str
    role: str
    access_key_id: str
    secret_access_key: str = field(repr=False)
    preferred_region: str

    def as_record(self) -> dict[str, str]:
        return {
            "username": self.username,
            "platform": self.platform,
            "role": self.role,
            "access_key_id": self.access_key_id,
            "secret_access_key": self.secret_access_key,
            "preferred_region": self.preferred_region,
        }


@dataclass(frozen=True)
class AccessKey:
    # Secret is only known for keys minted during this run
    access_key_id: str
    secret_access_key: Optional[str] = field(default=None, repr=False)
