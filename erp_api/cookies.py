from fastapi import Request, Response

from erp_api.settings import Settings
from erp_api.utils import parse_duration

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
SESSION_COOKIE = "session_id"
USER_PREFS_COOKIE = "user_prefs"

AUTH_COOKIES = (ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, SESSION_COOKIE)


class CookieService:
    """Sets, reads and clears the auth cookies"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.secure = settings.cookie_secure or settings.is_production
        self.same_site = "strict" if settings.is_production else "lax"
        self.domain = settings.cookie_domain if settings.is_production else None

    def _set(self, response: Response, key: str, value: str, max_age: int):
        response.set_cookie(
            key,
            value,
            max_age=max_age,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.same_site,
        )

    def set_access_token_cookie(self, response: Response, access_token: str):
        max_age = int(parse_duration(self.settings.jwt_expires_in).total_seconds())
        self._set(response, ACCESS_TOKEN_COOKIE, access_token, max_age)

    def set_refresh_token_cookie(self, response: Response, refresh_token: str):
        max_age = int(parse_duration(self.settings.session_lifetime).total_seconds())
        self._set(response, REFRESH_TOKEN_COOKIE, refresh_token, max_age)

    def set_session_cookie(self, response: Response, session_id: str):
        # Lives as long as the session row, otherwise silent refresh breaks early
        max_age = int(parse_duration(self.settings.session_lifetime).total_seconds())
        self._set(response, SESSION_COOKIE, session_id, max_age)

    def set_auth_cookies(self, response: Response, access_token: str, refresh_token: str, session_id: str):
        self.set_access_token_cookie(response, access_token)
        self.set_refresh_token_cookie(response, refresh_token)
        self.set_session_cookie(response, session_id)

    def clear_all_auth_cookies(self, response: Response):
        for key in AUTH_COOKIES:
            response.delete_cookie(
                key,
                path="/",
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite=self.same_site,
            )
        response.delete_cookie(USER_PREFS_COOKIE, path="/")

    @staticmethod
    def get_access_token(request: Request) -> str | None:
        return request.cookies.get(ACCESS_TOKEN_COOKIE) or None

    @staticmethod
    def get_refresh_token(request: Request) -> str | None:
        return request.cookies.get(REFRESH_TOKEN_COOKIE) or None

    @staticmethod
    def get_session_id(request: Request) -> str | None:
        return request.cookies.get(SESSION_COOKIE) or None

    @staticmethod
    def has_auth_cookies(request: Request) -> bool:
        return any(request.cookies.get(key) for key in AUTH_COOKIES)
