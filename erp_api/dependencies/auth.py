import logging
from typing import Annotated

from fastapi import Depends, Request, Response

from erp_api.cookies import CookieService
from erp_api.database import DbSessionDep
from erp_api.errors import AuthenticationError
from erp_api.models.auth import AccessClaims, RefreshResult, RequestContext
from erp_api.sessions import refresh_access_token
from erp_api.settings import get_settings
from erp_api.tokens import decode_access_token

logger = logging.getLogger(__name__)


def get_cookie_service() -> CookieService:
    return CookieService(get_settings())

CookieServiceDep = Annotated[CookieService, Depends(get_cookie_service)]

def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )

RequestContextDep = Annotated[RequestContext, Depends(get_request_context)]

def extract_access_token(request: Request) -> str | None:
    token = CookieService.get_access_token(request)
    if token:
        return token
    scheme, _, credentials = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None

def apply_refreshed_identity(
    request: Request,
    response: Response,
    cookies: CookieService,
    result: RefreshResult,
) -> AccessClaims:
    cookies.set_access_token_cookie(response, result.access_token)
    cookies.set_session_cookie(response, result.session_id)
    request.state.user = result.claims
    return result.claims

def silent_refresh(
    request: Request,
    response: Response,
    session: DbSessionDep,
    cookies: CookieService,
    refresh_token: str,
    session_id: str,
) -> AccessClaims:
    result = refresh_access_token(session, refresh_token, session_id=session_id)
    if not result.success:
        logger.info("Silent refresh failed: %s", result.error)
        raise AuthenticationError(result.error or "Invalid refresh token", clear_cookies=True)
    return apply_refreshed_identity(request, response, cookies, result)

def authenticate_token(
    request: Request,
    response: Response,
    session: DbSessionDep,
    cookies: CookieServiceDep,
) -> AccessClaims:
    access_token = extract_access_token(request)
    refresh_token = cookies.get_refresh_token(request)
    session_id = cookies.get_session_id(request)

    if not access_token:
        if refresh_token and session_id:
            return silent_refresh(request, response, session, cookies, refresh_token, session_id)
        raise AuthenticationError("Access token required")

    claims = decode_access_token(access_token)
    if claims is not None:
        request.state.user = claims
        return claims

    if refresh_token and session_id:
        return silent_refresh(request, response, session, cookies, refresh_token, session_id)
    raise AuthenticationError("Invalid or expired token", status_code=403, clear_cookies=True)

def optional_authentication(
    request: Request,
    response: Response,
    session: DbSessionDep,
    cookies: CookieServiceDep,
) -> AccessClaims | None:
    """Like authenticate_token, but anonymous callers get None instead of an error"""
    access_token = extract_access_token(request)
    if access_token is None and not cookies.has_auth_cookies(request):
        return None

    if access_token:
        claims = decode_access_token(access_token)
        if claims is not None:
            request.state.user = claims
            return claims

    refresh_token = cookies.get_refresh_token(request)
    session_id = cookies.get_session_id(request)
    if not (refresh_token and session_id):
        return None

    result = refresh_access_token(session, refresh_token, session_id=session_id)
    if not result.success:
        logger.info("Optional refresh failed: %s", result.error)
        return None
    return apply_refreshed_identity(request, response, cookies, result)

CurrentUserDep = Annotated[AccessClaims, Depends(authenticate_token)]
OptionalUserDep = Annotated[AccessClaims | None, Depends(optional_authentication)]
