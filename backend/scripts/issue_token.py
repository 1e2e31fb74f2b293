"""Issue a development access token and make sure the database tables exist.

Usage:
    python -m scripts.issue_token --user-id user-123 --minutes 120
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add parent dir to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from docchat.core.database import init_db
from docchat.core.security import create_access_token


def main(argv: list[str] | None = None) -> str:
    parser = argparse.ArgumentParser(description="Issue a development access token")
    parser.add_argument("--user-id", required=True, help="Identity provider user id (token subject)")
    parser.add_argument("--minutes", type=int, default=60, help="Token lifetime in minutes")
    parser.add_argument("--skip-db", action="store_true", help="Do not create database tables")
    args = parser.parse_args(argv)

    if not args.skip_db:
        asyncio.run(init_db())

    token = create_access_token(args.user_id, expires_minutes=args.minutes)
    print(token)
    return token


if __name__ == "__main__":
    main()
