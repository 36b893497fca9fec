from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg2
import psycopg2.extras
import psycopg2.pool
import pytest

from scripts.cup_init.config import DatabaseConfig, IdentityConfig
from scripts.cup_init.db import Database, row_to_administrator, row_to_deployer
from scripts.cup_init.errors import MalformedRecordError

from tests.fakes import deployer_profile


@pytest.fixture
def pg(monkeypatch):
    cursor = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    pool = MagicMock()
    pool.getconn.return_value = conn
    monkeypatch.setattr(psycopg2.pool, "ThreadedConnectionPool", lambda **kwargs: pool)
    db = Database(DatabaseConfig(url="postgresql://test"), IdentityConfig())
    return db, conn, cursor


def test_find_administrator_absent(pg):
    db, _, cursor = pg
    cursor.fetchall.return_value = []

    assert db.find_administrator() is None
    assert cursor.execute.call_args[0][1] == ("cup-admin",)


def test_find_administrator_uses_oldest(pg):
    db, _, cursor = pg
    cursor.fetchall.return_value = [
        {"access_key_id": "AKIA1", "secret_access_key": "s1", "preferred_region": "eu-west-2"},
        {"access_key_id": "AKIA2", "secret_access_key": "s2", "preferred_region": "us-east-1"},
    ]

    admin = db.find_administrator()

    assert admin.access_key_id == "AKIA1"
    assert admin.preferred_region == "eu-west-2"


def test_count_deployer_profiles_filters_on_username_and_role(pg):
    db, _, cursor = pg
    cursor.fetchone.return_value = {"n": 3}

    assert db.count_deployer_profiles() == 3
    assert cursor.execute.call_args[0][1] == ("clio-up", "cup-deployer")


def test_insert_deployer_profile_commits(pg):
    db, conn, cursor = pg
    profile = deployer_profile("AKIANEW", secret="fresh")

    db.insert_deployer_profile(profile)

    params = cursor.execute.call_args[0][1]
    assert params[1:] == ("clio-up", "aws", "cup-deployer", "AKIANEW", "fresh", "eu-west-2")
    conn.commit.assert_called_once()


def test_delete_all_returns_rowcount(pg):
    db, _, cursor = pg
    cursor.rowcount = 4

    assert db.delete_all_deployer_profiles() == 4


def test_transaction_rolls_back_on_error(pg):
    db, conn, cursor = pg
    cursor.execute.side_effect = psycopg2.OperationalError("connection lost")

    with pytest.raises(psycopg2.OperationalError):
        db.count_deployer_profiles()

    conn.rollback.assert_called_once()
    conn.commit.assert_not_called()


def test_record_run_is_a_single_insert(pg):
    db, conn, cursor = pg
    started = datetime(2026, 1, 1, tzinfo=timezone.utc)

    db.record_run(
        run_id="run-1", mode="converge", status="FAILED", started_at=started,
        reason="denied", error_message="denied", error_detail={"traceback": "tb"},
    )

    cursor.execute.assert_called_once()
    sql, params = cursor.execute.call_args[0]
    assert sql.strip().startswith("INSERT INTO cup_reconciliation_runs")
    assert params[:6] == ("run-1", "converge", "FAILED", "denied", None, started)
    assert isinstance(params[7], psycopg2.extras.Json)
    conn.commit.assert_called_once()


def test_record_run_without_error_detail(pg):
    db, _, cursor = pg

    db.record_run(
        run_id="run-2", mode="converge", status="IN_SYNC",
        started_at=datetime(2026, 1, 1, tzinfo=timezone.utc), access_key_id="AKIANEW",
    )

    params = cursor.execute.call_args[0][1]
    assert params[4] == "AKIANEW"
    assert params[6:] == (None, None)


def test_malformed_rows_are_rejected():
    with pytest.raises(MalformedRecordError):
        row_to_administrator({"access_key_id": "AKIA1", "secret_access_key": None, "preferred_region": "x"})
    with pytest.raises(MalformedRecordError):
        row_to_deployer({"username": "clio-up", "role": "cup-deployer", "access_key_id": ""})


def test_row_to_deployer_tolerates_missing_optional_fields():
    profile = row_to_deployer({"username": "clio-up", "role": "cup-deployer", "access_key_id": "AKIA1"})

    assert profile.access_key_id == "AKIA1"
    assert profile.secret_access_key == ""
