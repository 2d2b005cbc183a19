"""Telegram Mini App ``initData`` verification.

The Mini App hands the backend a query string signed by Telegram with a key
derived from the bot token. Validation is a pure function of the payload and
the token: no clock, no database, no network.
"""

import hashlib
import hmac
import json
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode

SECRET_KEY_SEED = b"WebAppData"


@dataclass(frozen=True)
class InitDataCheck:
    valid: bool
    identity: dict | None = None
    reason: str | None = None
    fields: dict[str, str] | None = None


def parse_init_data(init_data: str | Mapping[str, str]) -> dict[str, str]:
    if isinstance(init_data, Mapping):
        return {str(key): str(value) for key, value in init_data.items()}
    return dict(parse_qsl(init_data, keep_blank_values=True))


def build_data_check_string(fields: Mapping[str, str]) -> str:
    # Lines are sorted as whole "key=value" strings, not by key.
    lines = sorted(f"{key}={value}" for key, value in fields.items() if key != "hash")
    return "\n".join(lines)


def derive_secret_key(bot_token: str) -> bytes:
    return hmac.new(SECRET_KEY_SEED, bot_token.encode("utf-8"), hashlib.sha256).digest()


def sign_data_check_string(data_check_string: str, bot_token: str) -> str:
    return hmac.new(
        derive_secret_key(bot_token),
        data_check_string.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def validate_init_data(init_data: str | Mapping[str, str] | None, bot_token: str) -> InitDataCheck:
    if not init_data:
        return InitDataCheck(valid=False, reason="Empty payload")

    fields = parse_init_data(init_data)
    received_hash = fields.pop("hash", None)
    if not received_hash:
        return InitDataCheck(valid=False, reason="Missing hash")

    calculated_hash = sign_data_check_string(build_data_check_string(fields), bot_token)
    if not hmac.compare_digest(calculated_hash.encode("utf-8"), received_hash.encode("utf-8")):
        return InitDataCheck(valid=False, reason="Hash mismatch")

    raw_user = fields.get("user")
    if not raw_user:
        return InitDataCheck(valid=False, reason="Missing user")
    try:
        identity = json.loads(raw_user)
    except ValueError:
        return InitDataCheck(valid=False, reason="Invalid user payload")
    if not isinstance(identity, dict):
        return InitDataCheck(valid=False, reason="Invalid user payload")
    user_id = identity.get("id")
    if isinstance(user_id, bool) or not isinstance(user_id, int):
        return InitDataCheck(valid=False, reason="Invalid user id")

    return InitDataCheck(valid=True, identity=identity, fields=fields)


def is_init_data_fresh(fields: Mapping[str, str], max_age_seconds: int, now: float) -> bool:
    """Check ``auth_date`` against a replay window. Not part of signature validation."""
    try:
        auth_date = int(fields.get("auth_date", ""))
    except ValueError:
        return False
    return 0 <= now - auth_date <= max_age_seconds


def build_init_data(fields: Mapping[str, str], bot_token: str) -> str:
    """Sign ``fields`` the way the Telegram client does and return the query string."""
    payload = {key: str(value) for key, value in fields.items() if key != "hash"}
    payload["hash"] = sign_data_check_string(build_data_check_string(payload), bot_token)
    return urlencode(payload)
