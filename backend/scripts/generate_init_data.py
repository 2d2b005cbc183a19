"""Print a signed Telegram initData string for local testing.

    python scripts/generate_init_data.py --user scripts/mock-user.json
"""
import argparse
import json
import secrets
import sys
import time
from pathlib import Path

from wishsync.core.config import settings
from wishsync.core.telegram_auth import build_init_data


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--user", type=Path, help="JSON file with the Telegram user object")
    parser.add_argument("--id", type=int, default=777000)
    parser.add_argument("--first-name", default="Test")
    parser.add_argument("--bot-token", default=settings.telegram_bot_token)
    args = parser.parse_args()

    if not args.bot_token:
        print("TELEGRAM_BOT_TOKEN is not set (use --bot-token or .env)", file=sys.stderr)
        sys.exit(1)

    if args.user:
        user = json.loads(args.user.read_text(encoding="utf-8"))
    else:
        user = {"id": args.id, "first_name": args.first_name}

    init_data = build_init_data(
        {
            "query_id": secrets.token_hex(12),
            "user": json.dumps(user, separators=(",", ":"), ensure_ascii=False),
            "auth_date": str(int(time.time())),
        },
        args.bot_token,
    )
    print(init_data)


if __name__ == "__main__":
    main()
