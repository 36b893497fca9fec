"""cup-init settings, read from the environment (and .env via python-dotenv).

DATABASE_URL and PG_PASSWORD may hold an aws-secret://name[#json_key]
reference, which is resolved through AWS Secrets Manager at load time.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

import boto3
from dotenv import load_dotenv
from psycopg2.extensions import make_dsn

DEFAULT_REQUIRED_POLICY_ARNS = ("arn:aws:iam::aws:policy/AdministratorAccess",)

_SECRET_PREFIX = "aws-secret://"


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    min_connections: int = 1
    max_connections: int = 4


@dataclass(frozen=True)
class IdentityConfig:
    deployer_username: str = "clio-up"
    admin_role: str = "cup-admin"
    deployer_role: str = "cup-deployer"
    platform: str = "aws"
    # Attached one at a time, in this order
    required_policy_arns: tuple[str, ...] = DEFAULT_REQUIRED_POLICY_ARNS


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 10
    base_seconds: float = 1.0
    max_seconds: float = 30.0

    def delay(self, attempt: int) -> float:
        """Exponential backoff for the given zero-based attempt."""
        return min(self.base_seconds * (2 ** attempt), self.max_seconds)


@dataclass(frozen=True)
class SchedulerConfig:
    verify_interval_min: int = 60
    auto_converge: bool = False
    misfire_grace_time: int = 300


@dataclass(frozen=True)
class CupConfig:
    database: DatabaseConfig
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _policy_arns() -> tuple[str, ...]:
    raw = os.environ.get("CUP_REQUIRED_POLICY_ARNS", "")
    arns = tuple(s.strip() for s in raw.split(",") if s.strip())
    return arns or DEFAULT_REQUIRED_POLICY_ARNS


def _fetch_aws_secret(name: str, json_key: str) -> str:
    client = boto3.client("secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1"))
    value = client.get_secret_value(SecretId=name)["SecretString"]
    return str(json.loads(value)[json_key]) if json_key else value


def _unwrap_secret(value: str) -> str:
    """Return value, or the secret it names as aws-secret://name[#json_key]."""
    if not value.startswith(_SECRET_PREFIX):
        return value
    name, _, json_key = value[len(_SECRET_PREFIX):].partition("#")
    return _fetch_aws_secret(name, json_key)


def _database_url() -> str:
    url = os.environ.get("DATABASE_URL", "")
    if url:
        return _unwrap_secret(url)
    # Local development: build the DSN from PG_* variables
    return make_dsn(
        host=os.environ.get("PG_HOST", "localhost"),
        port=os.environ.get("PG_PORT", "5432"),
        user=os.environ.get("PG_USER", "cup"),
        password=_unwrap_secret(os.environ.get("PG_PASSWORD", "localdev-change-me")),
        dbname=os.environ.get("PG_DATABASE", "cup"),
    )


def load_config() -> CupConfig:
    """Load configuration from environment variables.

    The database URL may be a secret reference resolved through AWS
    Secrets Manager. Everything else has a working default.
    """
    load_dotenv()

    database = DatabaseConfig(
        url=_database_url(),
        min_connections=_int_env("DB_MIN_CONNECTIONS", 1),
        max_connections=_int_env("DB_MAX_CONNECTIONS", 4),
    )

    identity = IdentityConfig(
        deployer_username=os.environ.get("CUP_DEPLOYER_USERNAME", "clio-up"),
        admin_role=os.environ.get("CUP_ADMIN_ROLE", "cup-admin"),
        deployer_role=os.environ.get("CUP_DEPLOYER_ROLE", "cup-deployer"),
        platform=os.environ.get("CUP_PLATFORM", "aws"),
        required_policy_arns=_policy_arns(),
    )

    retry = RetryConfig(
        max_attempts=_int_env("CUP_RETRY_MAX_ATTEMPTS", 10),
        base_seconds=_float_env("CUP_RETRY_BASE_SECONDS", 1.0),
        max_seconds=_float_env("CUP_RETRY_MAX_SECONDS", 30.0),
    )
    if retry.max_attempts < 1:
        raise ValueError("CUP_RETRY_MAX_ATTEMPTS must be at least 1")

    scheduler = SchedulerConfig(
        verify_interval_min=_int_env("CUP_VERIFY_INTERVAL_MIN", 60),
        auto_converge=os.environ.get("CUP_AUTO_CONVERGE", "").lower() == "true",
    )

    return CupConfig(
        database=database,
        identity=identity,
        retry=retry,
        scheduler=scheduler,
    )
