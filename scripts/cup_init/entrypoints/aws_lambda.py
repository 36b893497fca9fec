"""AWS Lambda handler for deployer identity reconciliation.

Invoked as a pre-flight gate by the deploy pipeline, or on a schedule by
an EventBridge rule.

Event format:
  {"mode": "verify"}
  {"mode": "converge"}
"""

from __future__ import annotations

import json
import logging
import os
import sys

# Ensure the project root is on sys.path for Lambda packaging
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from scripts.cup_init.config import load_config
from scripts.cup_init.db import Database
from scripts.cup_init.engine import ReconciliationEngine
from scripts.cup_init.logging_config import configure_logging
from scripts.cup_init.models import Mode
from scripts.cup_init.policy import FatalError

logger = logging.getLogger("cup_init.lambda")


def handler(event: dict, context) -> dict:
    """Lambda entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    raw_mode = event.get("mode", "")
    try:
        mode = Mode(raw_mode)
    except ValueError:
        return {"statusCode": 400, "body": f"Invalid 'mode' in event: {raw_mode!r}"}

    logger.info("Lambda invoked", extra={"mode": mode.value})

    try:
        config = load_config()
        db = Database(config.database, config.identity)
    except Exception as exc:
        logger.error("Initialisation failed: %s", exc, exc_info=True)
        return {
            "statusCode": 500,
            "body": json.dumps({"mode": mode.value, "error": str(exc)}),
        }

    try:
        verdict = ReconciliationEngine(config, db).run(mode)
    finally:
        db.close()

    if isinstance(verdict, FatalError):
        return {
            "statusCode": 500,
            "body": json.dumps({"mode": mode.value, "error": str(verdict.cause)}),
        }
    return {
        "statusCode": 200,
        "body": json.dumps({
            "mode": mode.value,
            "status": verdict.status,
            "detail": verdict.describe(),
        }),
    }
