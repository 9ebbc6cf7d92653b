"""Verification-email resend routes.

Mounted at ``/auth`` in ``main.py``.  Account creation and sign-in belong
to the external identity provider; this service only lets an
authenticated user ask for another verification email.  The request is
rate limited per user (three per hour by default) and handed to the
notification mailer as an ``auth.verification_resend_requested`` event.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from capstone_portal.api.dependencies import (
    CurrentCaller,
    EventsDep,
    get_rate_limiter,
    get_resend_verification_limit,
)
from capstone_portal.api.responses import error_response
from capstone_portal.core.rate_limiter import (
    RESEND_VERIFICATION_ENDPOINT,
    RateLimitConfig,
    RateLimiter,
)
from capstone_portal.core.schemas.rate_limit import RateLimitStatusRead

logger = logging.getLogger(__name__)

router = APIRouter()

Limiter = Annotated[RateLimiter, Depends(get_rate_limiter)]
ResendLimit = Annotated[RateLimitConfig, Depends(get_resend_verification_limit)]


@router.post("/resend-verification", summary="Resend the verification email")
async def resend_verification(
    caller: CurrentCaller,
    limiter: Limiter,
    limit: ResendLimit,
    events: EventsDep,
) -> JSONResponse:
    """Queue another verification email for the caller.

    Returns HTTP 429 with ``Retry-After`` once the caller has used up the
    window's budget.  Every response carries ``X-RateLimit-*`` headers.
    """
    result = await limiter.check_rate_limit(str(caller.uid), RESEND_VERIFICATION_ENDPOINT, limit)
    if not result.allowed:
        logger.warning(
            "Rate limit exceeded for resend verification",
            extra={"user_id": str(caller.uid), "retry_after": result.retry_after},
        )
        return error_response(
            429,
            "Too many requests. Please wait before requesting another verification email.",
            headers=result.headers(),
        )

    if caller.email_verified:
        return JSONResponse(
            {
                "success": True,
                "data": {"message": "Email is already verified"},
                "message": "Email already verified",
            },
            headers=result.headers(),
        )

    await events.publish("auth.verification_resend_requested", user_id=str(caller.uid))
    logger.info("Verification email resend requested", extra={"user_id": str(caller.uid)})
    return JSONResponse(
        {
            "success": True,
            "data": {"message": "A new verification email is on its way"},
            "message": "Verification email sent",
        },
        headers=result.headers(),
    )


@router.get("/resend-verification/status", summary="Verification resend budget")
async def resend_verification_status(
    caller: CurrentCaller,
    limiter: Limiter,
    limit: ResendLimit,
) -> JSONResponse:
    """Report the caller's current window without consuming a request."""
    result = await limiter.get_rate_limit_status(
        str(caller.uid), RESEND_VERIFICATION_ENDPOINT, limit
    )
    body = RateLimitStatusRead(
        allowed=result.allowed,
        limit=result.limit,
        remaining=result.remaining,
        count=result.count,
        reset_at=result.reset_at,
        retry_after=result.retry_after,
    )
    return JSONResponse(
        {"success": True, "data": body.model_dump(mode="json")},
        headers=result.headers(),
    )
