"""Session Guard: one live session per process, restore/login/logout/route guard"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING
from urllib.parse import urlencode

import pydantic
from pydantic import BaseModel, Field

from ips_dashboard.config import AppConfig
from ips_dashboard.models import Session, User, UserRole
from ips_dashboard.storage import TOKEN_KEY, USER_KEY, ClientStorage

if TYPE_CHECKING:
    from ips_dashboard.gateway import ApiGateway

logger = logging.getLogger(__name__)

LogoutCallback = Callable[[], "Awaitable[None] | None"]


class RouteDecision(BaseModel):
    allowed: bool
    redirect_to: str | None = None
    params: dict[str, str] = Field(default_factory=dict)

    @property
    def location(self) -> str | None:
        if self.redirect_to is None:
            return None
        if not self.params:
            return self.redirect_to
        return f"{self.redirect_to}?{urlencode(self.params)}"


class SessionGuard:
    def __init__(self, storage: ClientStorage, config: AppConfig | None = None) -> None:
        self.storage = storage
        self.config = config or AppConfig()
        self._session: Session | None = None
        self._api: ApiGateway | None = None
        self._logout_callbacks: list[LogoutCallback] = []
        self.pending_redirect: RouteDecision | None = None

    def bind(self, api: ApiGateway) -> None:
        self._api = api

    # ── State ──

    def get_token(self) -> str | None:
        return self._session.token if self._session else None

    @property
    def user(self) -> User | None:
        return self._session.user if self._session else None

    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == UserRole.ADMIN

    def on_logout(self, callback: LogoutCallback) -> None:
        self._logout_callbacks.append(callback)

    def off_logout(self, callback: LogoutCallback) -> None:
        if callback in self._logout_callbacks:
            self._logout_callbacks.remove(callback)

    # ── Lifecycle ──

    async def restore(self) -> Session | None:
        """Load a persisted session. A corrupt stored value counts as no session."""
        token = await self.storage.get(TOKEN_KEY)
        raw_user = await self.storage.get(USER_KEY)
        if not token or not raw_user:
            self._session = None
            return None
        try:
            user = User.model_validate(json.loads(raw_user))
        except (json.JSONDecodeError, pydantic.ValidationError) as exc:
            logger.warning("Discarding corrupt stored session: %s", exc)
            await self.storage.remove(TOKEN_KEY, USER_KEY)
            self._session = None
            return None
        self._session = Session(token=token, user=user)
        logger.info("Restored session for %s", user.username)
        return self._session

    async def login(self, username: str, password: str) -> Session:
        if self._api is None:
            raise RuntimeError("SessionGuard is not bound to a gateway")
        session = await self._api.login(username, password)
        self._session = session
        self.pending_redirect = None
        await self.storage.set(TOKEN_KEY, session.token)
        await self.storage.set(USER_KEY, session.user.model_dump_json(by_alias=True))
        logger.info("Logged in as %s (%s)", session.user.username, session.user.role.value)
        return session

    async def logout(self) -> None:
        had_session = self._session is not None
        self._session = None
        await self.storage.remove(TOKEN_KEY, USER_KEY)
        if had_session:
            logger.info("Session closed")
        for callback in list(self._logout_callbacks):
            result = callback()
            if inspect.isawaitable(result):
                await result

    async def expire(self) -> None:
        """401 from the server: drop the session and send the operator to login."""
        logger.warning("Session rejected by server, logging out")
        await self.logout()
        self.pending_redirect = RouteDecision(allowed=False, redirect_to=self.config.login_route)

    # ── Route guard ──

    def requires_auth(self, route: str) -> bool:
        return any(route == p or route.startswith(p.rstrip("/") + "/") for p in self.config.protected_prefixes)

    def require_auth(self, route: str) -> RouteDecision:
        if route == self.config.login_route:
            if self.is_authenticated():
                return RouteDecision(allowed=False, redirect_to=self.config.landing_route)
            return RouteDecision(allowed=True)
        if self.requires_auth(route) and not self.is_authenticated():
            return RouteDecision(allowed=False, redirect_to=self.config.login_route, params={"returnTo": route})
        return RouteDecision(allowed=True)
