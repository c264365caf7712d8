"""
FastAPI routes bridging the user interface to the session and token services.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from securemail.clients.gnupg import KeyringError
from securemail.core.exceptions import (
    AuthError,
    AuthorizationDeniedError,
    AuthorizationInProgressError,
    AuthorizationTimeoutError,
    DetectError,
    NetworkFailureError,
    PortUnavailableError,
    ReauthRequiredError,
)
from securemail.dependencies import (
    get_app_settings,
    get_code_prompt,
    get_reconciliation_engine,
    get_session_manager,
    get_token_detector,
)
from securemail.models.hardware import (
    KeyDiagnosis,
    ReconciliationMethod,
    ReconciliationReport,
)
from securemail.schemas import AuthStatusResponse, OAuthCodePayload, TokenStatusResponse

router = APIRouter()
logger = logging.getLogger(__name__)

_AUTH_ERROR_STATUS = (
    (ReauthRequiredError, HTTPStatus.UNAUTHORIZED),
    (AuthorizationInProgressError, HTTPStatus.CONFLICT),
    (PortUnavailableError, HTTPStatus.CONFLICT),
    (AuthorizationTimeoutError, HTTPStatus.REQUEST_TIMEOUT),
    (AuthorizationDeniedError, HTTPStatus.FORBIDDEN),
    (NetworkFailureError, HTTPStatus.BAD_GATEWAY),
)


def _auth_http_error(exc: AuthError) -> HTTPException:
    for error_type, status in _AUTH_ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail=str(exc))


def _status_response(session_manager: Any, code_prompt: Any) -> AuthStatusResponse:
    status = session_manager.check_authentication()
    return AuthStatusResponse(
        is_authenticated=status.is_authenticated,
        needs_refresh=status.needs_refresh,
        expires_at=status.expires_at,
        authorization_in_progress=session_manager.flow.in_progress,
        authorization_url=code_prompt.authorization_url if code_prompt.waiting else None,
    )


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck(settings: Annotated[Any, Depends(get_app_settings)]) -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok", "environment": settings.environment}


@router.get("/auth/status", response_model=AuthStatusResponse)
async def authentication_status(
    session_manager: Annotated[Any, Depends(get_session_manager)],
    code_prompt: Annotated[Any, Depends(get_code_prompt)],
) -> AuthStatusResponse:
    return _status_response(session_manager, code_prompt)


@router.post("/auth/login", response_model=AuthStatusResponse)
async def login(
    session_manager: Annotated[Any, Depends(get_session_manager)],
    code_prompt: Annotated[Any, Depends(get_code_prompt)],
) -> AuthStatusResponse:
    """
    Run the configured authorization flow to completion.

    The request stays open until the consent redirect arrives, the code is
    submitted, the attempt is cancelled or the watchdog expires.
    """
    try:
        await session_manager.authenticate()
    except AuthError as exc:
        raise _auth_http_error(exc) from exc
    return _status_response(session_manager, code_prompt)


@router.post("/auth/cancel", status_code=HTTPStatus.OK)
async def cancel_login(
    session_manager: Annotated[Any, Depends(get_session_manager)],
    code_prompt: Annotated[Any, Depends(get_code_prompt)],
) -> dict:
    prompt_cancelled = code_prompt.cancel()
    flow_cancelled = session_manager.cancel_authentication()
    return {"cancelled": prompt_cancelled or flow_cancelled}


@router.post("/auth/code", status_code=HTTPStatus.ACCEPTED)
async def submit_authorization_code(
    payload: OAuthCodePayload,
    code_prompt: Annotated[Any, Depends(get_code_prompt)],
) -> dict:
    """Hand the pasted code to an out-of-band attempt waiting for it."""
    if not code_prompt.submit(payload.code):
        raise HTTPException(
            status_code=HTTPStatus.CONFLICT,
            detail="No authorization attempt is waiting for a code.",
        )
    return {"accepted": True}


@router.post("/auth/logout", response_model=AuthStatusResponse)
async def logout(
    session_manager: Annotated[Any, Depends(get_session_manager)],
    code_prompt: Annotated[Any, Depends(get_code_prompt)],
) -> AuthStatusResponse:
    await session_manager.logout()
    return _status_response(session_manager, code_prompt)


@router.get("/token", response_model=TokenStatusResponse)
async def hardware_token_status(
    detector: Annotated[Any, Depends(get_token_detector)],
) -> TokenStatusResponse:
    """Detect the connected hardware token."""
    try:
        result = await detector.detect()
    except DetectError as exc:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return TokenStatusResponse(
        detected=result.detected,
        identity=result.identity,
        has_keys=bool(result.identity and result.identity.has_keys),
    )


@router.post("/token/reconcile/{fingerprint}", response_model=ReconciliationReport)
async def reconcile_key(
    fingerprint: str,
    engine: Annotated[Any, Depends(get_reconciliation_engine)],
    method: Optional[ReconciliationMethod] = Query(
        default=None,
        description="Run only this import method instead of the default sequence.",
    ),
) -> ReconciliationReport:
    """Make sure the public key for ``fingerprint`` is in the local keyring."""
    try:
        if method is None:
            return await engine.reconcile(fingerprint)
        outcome = await engine.attempt(fingerprint, method)
    except (DetectError, KeyringError) as exc:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc
    return ReconciliationReport(
        fingerprint=outcome.fingerprint,
        state=engine.state_of(fingerprint),
        outcomes=[outcome],
    )


@router.get("/token/diagnose", response_model=KeyDiagnosis)
async def diagnose_token(
    engine: Annotated[Any, Depends(get_reconciliation_engine)],
) -> KeyDiagnosis:
    try:
        return await engine.diagnose()
    except (DetectError, KeyringError) as exc:
        raise HTTPException(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc


__all__ = ["router"]
