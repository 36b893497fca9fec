#!/usr/bin/env python3
"""
Repeatable seed script for the cup-admin administrator profile.

The reconciliation pipeline only reads the administrator profile; this
script is how it gets into the database in the first place.

Populates:
  - cup_profiles (exactly one row with role = cup-admin)

Prerequisites:
  - PostgreSQL with the schema from `cup-init init-db`
  - pip install psycopg2-binary

Usage:
  python scripts/seed_admin_profile.py --access-key-id AKIA... --secret-access-key ...
  python scripts/seed_admin_profile.py --dsn "postgresql://..." --region eu-west-2 ...
  python scripts/seed_admin_profile.py --dry-run ...     # print SQL, don't execute
"""

import argparse
import os
import sys
import uuid

ADMIN_ROLE = os.environ.get("CUP_ADMIN_ROLE", "cup-admin")


def generate_sql(access_key_id: str, secret_access_key: str, region: str, mask: bool = False) -> tuple[str, tuple]:
    """Return (sql, params) that replace any existing administrator rows."""
    sql = """
DELETE FROM cup_profiles WHERE role = %s;
INSERT INTO cup_profiles (id, username, platform, role, access_key_id, secret_access_key, preferred_region)
VALUES (%s, NULL, 'aws', %s, %s, %s, %s);
"""
    secret = "****" if mask else secret_access_key
    params = (ADMIN_ROLE, str(uuid.uuid4()), ADMIN_ROLE, access_key_id, secret, region)
    return sql, params


def main():
    parser = argparse.ArgumentParser(description="Seed the cup-admin profile into PostgreSQL")
    parser.add_argument("--dsn", default=os.environ.get("DATABASE_URL", ""),
                        help="PostgreSQL DSN (default: $DATABASE_URL)")
    parser.add_argument("--access-key-id", default=os.environ.get("CUP_ADMIN_ACCESS_KEY_ID", ""),
                        help="Administrator access key id (default: $CUP_ADMIN_ACCESS_KEY_ID)")
    parser.add_argument("--secret-access-key", default=os.environ.get("CUP_ADMIN_SECRET_ACCESS_KEY", ""),
                        help="Administrator secret (default: $CUP_ADMIN_SECRET_ACCESS_KEY)")
    parser.add_argument("--region", default=os.environ.get("AWS_REGION", "us-east-1"),
                        help="Preferred region (default: $AWS_REGION or us-east-1)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print generated SQL instead of executing")
    args = parser.parse_args()

    if not args.access_key_id or not args.secret_access_key:
        print("ERROR: --access-key-id and --secret-access-key are required.", file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        sql, params = generate_sql(args.access_key_id, args.secret_access_key, args.region, mask=True)
        print(sql)
        print("-- params:", params)
        return

    if not args.dsn:
        print("ERROR: No database connection. Set DATABASE_URL or use --dsn.", file=sys.stderr)
        print("       Use --dry-run to print SQL without executing.", file=sys.stderr)
        sys.exit(1)

    import psycopg2

    sql, params = generate_sql(args.access_key_id, args.secret_access_key, args.region)
    conn = psycopg2.connect(args.dsn)
    try:
        with conn.cursor() as cur:
            cur.execute(sql, params)
            cur.execute("SELECT COUNT(*) FROM cup_profiles WHERE role = %s", (ADMIN_ROLE,))
            print(f"Seed complete. Administrator profiles: {cur.fetchone()[0]}")
        conn.commit()
    except Exception as e:
        conn.rollback()
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
