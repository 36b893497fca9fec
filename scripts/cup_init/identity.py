"""AWS IAM provider for the deployer identity: user, access keys, policies."""

from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError

from scripts.cup_init.models import AccessKey, AdministratorProfile

logger = logging.getLogger("cup_init.identity")


class IamIdentityProvider:
    """Wraps the boto3 IAM client calls the reconciliation pipeline needs.

    Unexpected ClientErrors propagate. NoSuchEntity is translated on
    get_user (into None) and ignored on delete_access_key.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_administrator(cls, admin: AdministratorProfile) -> "IamIdentityProvider":
        """Configure a session from the administrator profile's keys and region."""
        session = boto3.session.Session(
            aws_access_key_id=admin.access_key_id,
            aws_secret_access_key=admin.secret_access_key,
            region_name=admin.preferred_region,
        )
        logger.info("Configured IAM session in %s", admin.preferred_region)
        return cls(session.client("iam"))

    def _paginate(self, method: str, key: str, **kwargs) -> list[dict]:
        """Generic paginator for boto3 APIs."""
        items: list[dict] = []
        paginator = self._client.get_paginator(method)
        for page in paginator.paginate(**kwargs):
            items.extend(page.get(key, []))
        return items

    def get_user(self, name: str) -> Optional[dict]:
        try:
            return self._client.get_user(UserName=name)["User"]
        except ClientError as e:
            if e.response["Error"]["Code"] == "NoSuchEntity":
                return None
            raise

    def create_user(self, name: str) -> dict:
        logger.info("Creating IAM user", extra={"user_name": name})
        return self._client.create_user(UserName=name)["User"]

    def list_access_keys(self, name: str) -> list[AccessKey]:
        keys = self._paginate("list_access_keys", "AccessKeyMetadata", UserName=name)
        return [AccessKey(access_key_id=k["AccessKeyId"]) for k in keys]

    def delete_access_key(self, name: str, access_key_id: str) -> None:
        logger.info("Deleting access key", extra={"user_name": name, "key_id": access_key_id})
        try:
            self._client.delete_access_key(UserName=name, AccessKeyId=access_key_id)
        except ClientError as e:
            # NoSuchEntity: the key is already gone
            if e.response["Error"]["Code"] != "NoSuchEntity":
                raise
            logger.info("Access key already deleted", extra={"key_id": access_key_id})

    def create_access_key(self, name: str) -> AccessKey:
        key = self._client.create_access_key(UserName=name)["AccessKey"]
        logger.info("Created access key", extra={"user_name": name, "key_id": key["AccessKeyId"]})
        return AccessKey(
            access_key_id=key["AccessKeyId"],
            secret_access_key=key["SecretAccessKey"],
        )

    def list_attached_policies(self, name: str) -> list[str]:
        policies = self._paginate("list_attached_user_policies", "AttachedPolicies", UserName=name)
        return [p["PolicyArn"] for p in policies]

    def attach_policy(self, name: str, arn: str) -> None:
        logger.info("Attaching policy %s", arn, extra={"user_name": name})
        self._client.attach_user_policy(UserName=name, PolicyArn=arn)
