"""
coordinator.py — AuthTokenCoordinator.

Owns the authenticated session (token, expiry, user, session type) and keeps
the token valid without every call site reasoning about expiry.

State machine:
    LoggedOut --login ok--> Authenticated --refresh ok--> Authenticated (new token/expiry)
    Authenticated --refresh failure | logout--> LoggedOut

Refresh triggers, all funnelled into refresh_token():
  - scheduled   one-shot at 75% of the remaining lifetime after every (re)authentication
  - activity    record_activity(), debounced 1s, refreshes when < 10 min remain
  - background  every 15 min, refreshes when < 20 min remain

refresh_token() is the single choke point: while a refresh is in flight every
caller awaits the same task, and a refresh that completed within the debounce
window satisfies new requests without another network call. A refresh failure
always ends the session: state is cleared, a "session expired" notice is set
and on_session_expired fires after a short delay so the notice can be seen.

Persistence: "remember me" sessions go to the durable storage; temporary
sessions go to a process-lifetime MemoryStorage.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from tracker.auth.provider import IdentityProvider
from tracker.auth.schemas import AuthGrant, AuthSession, SessionType, User, UserRole
from tracker.cache import AUTH_STORAGE_KEY, KeyValueStorage, MemoryStorage, discard, read_json, write_json
from tracker.config import Settings, settings
from tracker.errors import (
    AuthError,
    NotAuthenticatedError,
    ProviderUnavailableError,
    SessionExpiredError,
)

logger = logging.getLogger(__name__)


def compute_refresh_delay(token_expiration: float, now: float, fraction: float) -> float:
    """Seconds until the proactive refresh: fraction of the remaining lifetime, never negative."""
    return max(0.0, (token_expiration - now) * fraction)


class AuthTokenCoordinator:
    def __init__(
        self,
        provider: IdentityProvider,
        storage: KeyValueStorage,
        session_storage: Optional[KeyValueStorage] = None,
        *,
        config: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        on_session_expired: Optional[Callable[[], Any]] = None,
    ):
        self.provider = provider
        self.storage = storage
        self.session_storage = session_storage or MemoryStorage(clock)
        self.config = config or settings
        self.on_session_expired = on_session_expired
        self._clock = clock

        self.session: Optional[AuthSession] = None
        self.error: Optional[str] = None
        self.notice: Optional[str] = None
        self.is_loading = False
        self.next_refresh_delay: Optional[float] = None

        self._refresh_task: Optional[asyncio.Task] = None
        self._last_refresh: Optional[float] = None
        self._scheduled_task: Optional[asyncio.Task] = None
        self._background_task: Optional[asyncio.Task] = None
        self._activity_handle: Optional[asyncio.TimerHandle] = None
        self._redirect_handle: Optional[asyncio.TimerHandle] = None
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # State views
    # ------------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def token(self) -> Optional[str]:
        return self.session.token if self.session else None

    @property
    def token_expiration(self) -> Optional[float]:
        return self.session.token_expiration if self.session else None

    @property
    def user(self) -> Optional[User]:
        return self.session.user if self.session else None

    @property
    def session_type(self) -> Optional[SessionType]:
        return self.session.session_type if self.session else None

    def time_to_expiry(self) -> float:
        if self.session is None:
            return 0.0
        return self.session.token_expiration - self._clock()

    def has_role(self, role: Union[UserRole, Iterable[UserRole]]) -> bool:
        if self.session is None:
            return False
        roles = {role} if isinstance(role, (UserRole, str)) else set(role)
        return self.session.user.role in {UserRole(r) for r in roles}

    def clear_error(self) -> None:
        self.error = None

    # ------------------------------------------------------------------
    # Login / logout / restore
    # ------------------------------------------------------------------

    async def _login_with_retry(self, email: str, password: str, remember_me: bool) -> AuthGrant:
        # Only network failures are retried; bad credentials fail immediately
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.login_max_retries + 1),
            wait=wait_fixed(self.config.login_retry_delay),
            retry=retry_if_exception_type(ProviderUnavailableError),
            reraise=True,
        ):
            with attempt:
                grant = await self.provider.login(email, password, remember_me)
        return grant

    async def login(self, email: str, password: str, remember_me: bool = False) -> AuthSession:
        """
        Authenticate, choose the session type from the remember-me flag and
        persist accordingly. Failures set `error` to the user-facing message
        and re-raise the AuthError subclass.
        """
        self.is_loading = True
        self.error = None
        try:
            grant = await self._login_with_retry(email, password, remember_me)
            if grant.user is None:
                raise AuthError()
        except AuthError as exc:
            logger.info("Login failed reason=%s", type(exc).__name__)
            self.error = exc.user_message
            self._clear()
            raise
        finally:
            self.is_loading = False

        self._detach_session_work()
        self.session = AuthSession(
            token=grant.token,
            token_expiration=grant.expires_at,
            user=grant.user,
            session_type=SessionType.persistent if remember_me else SessionType.temporary,
        )
        self.notice = None
        self._last_refresh = None
        await self._persist()
        self._schedule_refresh()
        logger.info(
            "Login succeeded user_id=%s role=%s session_type=%s",
            grant.user.id,
            grant.user.role.value,
            self.session.session_type.value,
        )
        return self.session

    async def logout(self) -> None:
        """Invalidate the remote session (best effort) and always clear local state."""
        user_id = self.user.id if self.user else None
        self.is_loading = True
        try:
            await self.provider.logout(self.token)
        except Exception as exc:
            logger.warning("Remote logout failed user_id=%s: %s", user_id, type(exc).__name__)
        finally:
            self.is_loading = False
        self._clear()
        self._detach_session_work()
        await self._forget()
        self.error = None
        self.notice = None
        logger.info("Logged out user_id=%s", user_id)

    async def restore(self) -> bool:
        """
        Re-hydrate a persisted session on startup. Unreadable or expired records
        are dropped. A token close to expiry is refreshed straight away.
        """
        for storage in (self.storage, self.session_storage):
            data = await read_json(storage, AUTH_STORAGE_KEY)
            if data is None:
                continue
            try:
                stored = AuthSession.model_validate(data)
            except ValidationError:
                logger.warning("Dropping unreadable auth session")
                await discard(storage, AUTH_STORAGE_KEY)
                continue
            if stored.token_expiration <= self._clock():
                logger.info("Persisted auth session expired user_id=%s", stored.user.id)
                await discard(storage, AUTH_STORAGE_KEY)
                continue

            self.session = stored
            logger.info("Auth session restored user_id=%s", stored.user.id)
            if self.time_to_expiry() <= self.config.token_min_validity:
                await self.refresh_token(force=True)
            else:
                self._schedule_refresh()
            return self.is_authenticated
        return False

    async def update_user(self, **fields: Any) -> None:
        if self.session is None:
            raise NotAuthenticatedError()
        user = self.session.user.model_copy(update=fields)
        self.session = self.session.model_copy(update={"user": user})
        await self._persist()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_token(self, force: bool = False) -> Optional[float]:
        """
        Refresh the token, coalescing concurrent callers onto one request.

        Without force, a token outside the min-validity window is returned
        unchanged. A refresh that finished within `refresh_debounce` seconds
        also satisfies the call. Returns the new expiration, or None when
        logged out or the refresh failed (which ends the session).
        """
        if self.session is None:
            return None
        if self._refresh_task is not None and not self._refresh_task.done():
            return await asyncio.shield(self._refresh_task)
        if not force and self.time_to_expiry() > self.config.token_min_validity:
            return self.session.token_expiration
        if (
            self._last_refresh is not None
            and self._clock() - self._last_refresh < self.config.refresh_debounce
        ):
            return self.session.token_expiration

        self._refresh_task = asyncio.create_task(self._do_refresh())
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> Optional[float]:
        if self.session is None:
            return None
        token = self.session.token
        try:
            grant = await self.provider.refresh(token)
        except Exception as exc:
            if self.session is None or self.session.token != token:
                # the session this refresh belonged to is already gone
                logger.info("Ignoring failed refresh of a replaced session: %s", type(exc).__name__)
                return self.token_expiration
            # Whatever the cause, a failed refresh is a dead session
            logger.warning("Token refresh failed: %s", type(exc).__name__)
            await self._expire_session()
            return None

        if self.session is None or self.session.token != token:
            # logged out (or re-logged in) while the request was in flight
            return self.token_expiration

        self.session = self.session.model_copy(
            update={"token": grant.token, "token_expiration": grant.expires_at}
        )
        self._last_refresh = self._clock()
        await self._persist()
        self._schedule_refresh()
        logger.info("Token refreshed user_id=%s expires_in=%.0fs", self.session.user.id, self.time_to_expiry())
        return grant.expires_at

    async def ensure_valid_token(self) -> str:
        """Token for an outgoing request, refreshed first when close to expiry."""
        if self.session is None:
            raise NotAuthenticatedError()
        if self.time_to_expiry() <= self.config.token_min_validity:
            await self.refresh_token(force=True)
            if self.session is None:
                raise SessionExpiredError()
        return self.session.token

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background check (and the scheduled refresh if a session exists)."""
        if self._background_task is None or self._background_task.done():
            self._background_task = asyncio.create_task(self._background_loop())
        if self.session is not None and self._scheduled_task is None:
            self._schedule_refresh()

    async def stop(self) -> None:
        """Cancel every pending timer and in-flight task."""
        tasks = [t for t in (self._scheduled_task, self._background_task, self._refresh_task) if t]
        tasks.extend(self._pending)
        for handle in (self._activity_handle, self._redirect_handle):
            if handle is not None:
                handle.cancel()
        self._scheduled_task = self._background_task = None
        self._activity_handle = self._redirect_handle = None
        self._pending.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _schedule_refresh(self, minimum: float = 0.0) -> None:
        if self._scheduled_task is not None:
            self._scheduled_task.cancel()
            self._scheduled_task = None
        if self.session is None:
            return
        delay = max(
            minimum,
            compute_refresh_delay(
                self.session.token_expiration, self._clock(), self.config.token_refresh_fraction
            ),
        )
        self.next_refresh_delay = delay
        self._scheduled_task = asyncio.create_task(self._run_scheduled(delay))
        logger.debug("Token refresh scheduled in %.0fs", delay)

    async def _run_scheduled(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._scheduled_task = None
        await self.refresh_token(force=True)
        if self.session is not None and self._scheduled_task is None:
            # satisfied by a recent refresh; try again once the debounce window closes
            self._schedule_refresh(minimum=self._debounce_remaining())

    def _debounce_remaining(self) -> float:
        if self._last_refresh is None:
            return 0.0
        return max(0.0, self.config.refresh_debounce - (self._clock() - self._last_refresh))

    def record_activity(self) -> None:
        """Call on pointer / keyboard / touch input. Debounced."""
        if self.session is None:
            return
        if self._activity_handle is not None:
            self._activity_handle.cancel()
        loop = asyncio.get_running_loop()
        self._activity_handle = loop.call_later(self.config.activity_debounce, self._on_activity_settled)

    def _on_activity_settled(self) -> None:
        self._activity_handle = None
        if self.session is not None and self.time_to_expiry() < self.config.activity_refresh_threshold:
            self._spawn(self.refresh_token(force=True))

    async def background_check(self) -> Optional[float]:
        if self.session is not None and self.time_to_expiry() < self.config.background_refresh_threshold:
            return await self.refresh_token(force=True)
        return None

    async def _background_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.background_check_interval)
            await self.background_check()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # ------------------------------------------------------------------
    # Teardown helpers
    # ------------------------------------------------------------------

    def _clear(self) -> None:
        self.session = None
        self._last_refresh = None
        self.next_refresh_delay = None
        if self._scheduled_task is not None:
            self._scheduled_task.cancel()
            self._scheduled_task = None
        if self._activity_handle is not None:
            self._activity_handle.cancel()
            self._activity_handle = None

    def _detach_session_work(self) -> None:
        """
        Stop work tied to the previous session: a pending expiry redirect, and
        the in-flight refresh (left to finish on its own so callers already
        awaiting it are not cancelled, but no longer shared with new callers).
        """
        if self._redirect_handle is not None:
            self._redirect_handle.cancel()
            self._redirect_handle = None
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _expire_session(self) -> None:
        user_id = self.user.id if self.user else None
        self._clear()
        await self._forget()
        self.error = self.notice = SessionExpiredError().user_message
        logger.warning("Session expired user_id=%s", user_id)
        if self.on_session_expired is not None:
            if self._redirect_handle is not None:
                self._redirect_handle.cancel()
            loop = asyncio.get_running_loop()
            self._redirect_handle = loop.call_later(
                self.config.session_expired_redirect_delay, self._redirect
            )

    def _redirect(self) -> None:
        self._redirect_handle = None
        result = self.on_session_expired()
        if asyncio.iscoroutine(result):
            self._spawn(result)

    async def _persist(self) -> None:
        if self.session is None:
            return
        if self.session.session_type == SessionType.persistent:
            target, other, ttl = self.storage, self.session_storage, self.config.persistent_session_ttl
        else:
            target, other, ttl = self.session_storage, self.storage, self.config.temporary_session_ttl
        await write_json(target, AUTH_STORAGE_KEY, self.session.model_dump(mode="json"), ttl)
        await discard(other, AUTH_STORAGE_KEY)

    async def _forget(self) -> None:
        await discard(self.storage, AUTH_STORAGE_KEY)
        await discard(self.session_storage, AUTH_STORAGE_KEY)
