import time

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import ValidationError

from wishsync.api.deps import CurrentUserDep, DbSessionDep
from wishsync.core.audit import AuditAction, audit_log
from wishsync.core.config import settings
from wishsync.core.errors import BadRequest, Unauthenticated
from wishsync.core.logger import get_logger
from wishsync.core.rate_limit import check_rate_limit
from wishsync.core.security import issue_session_token
from wishsync.core.telegram_auth import is_init_data_fresh, validate_init_data
from wishsync.schemas.auth import AuthResponse, TelegramAuthRequest, TelegramProfile, UserPublic
from wishsync.services.identity import upsert_user


router = APIRouter(prefix="/auth", tags=["auth"])
logger = get_logger("auth")


def _reject(request: Request, reason: str) -> Unauthenticated:
    audit_log(AuditAction.TELEGRAM_LOGIN_FAILED, request=request, details={"reason": reason}, success=False)
    logger.info("Telegram auth rejected reason=%s", reason)
    return Unauthenticated("Invalid Telegram data")


@router.post("/telegram", response_model=AuthResponse)
async def telegram_login(
    payload: TelegramAuthRequest,
    request: Request,
    db: DbSessionDep,
) -> AuthResponse:
    check_rate_limit(request, "telegram_login", max_requests=settings.rate_limit_login_requests)

    init_data = (payload.init_data or "").strip()
    if not init_data:
        raise BadRequest("initData is required")

    if not settings.telegram_bot_token:
        logger.error("TELEGRAM_BOT_TOKEN is not configured; cannot validate initData")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

    check = validate_init_data(init_data, settings.telegram_bot_token)
    if not check.valid:
        raise _reject(request, check.reason or "invalid")

    max_age = settings.telegram_init_data_max_age_seconds
    if max_age > 0 and not is_init_data_fresh(check.fields or {}, max_age, time.time()):
        raise _reject(request, "stale")

    try:
        profile = TelegramProfile.model_validate(check.identity)
    except ValidationError:
        raise _reject(request, "profile") from None

    user = await upsert_user(db, profile)
    token = issue_session_token(user.id)
    audit_log(AuditAction.TELEGRAM_LOGIN, request=request, user_id=user.id)
    return AuthResponse(
        **UserPublic.model_validate(user).model_dump(),
        token=token,
    )


@router.get("/me", response_model=UserPublic)
async def get_me(current_user: CurrentUserDep) -> UserPublic:
    return UserPublic.model_validate(current_user)
