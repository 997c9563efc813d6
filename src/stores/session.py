from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from db.models import Identity, Profile, Session
from db.platform import AuthEvent, IdentityProvider
from utils.logger import get_logger
from utils.subscription import Listeners, Subscription

_logger = get_logger(__name__)

WATCHDOG_SECONDS = 5.0

ProfileLookup = Callable[[str], Awaitable[Optional[Profile]]]


class SessionState(str, Enum):
    BOOTSTRAPPING = "bootstrapping"
    AUTHENTICATED = "authenticated"
    PROFILE_ENRICHED = "profile_enriched"
    ANONYMOUS = "anonymous"


class SessionManager:
    """
    Owns the current Session, the only writer of it.

    Two sources race to set the session: the persisted session fetched at
    startup, and the provider's change-event stream. Every observed event bumps
    `generation`; an async completion only applies if the generation it
    captured when it was issued is still current and the manager is alive.
    So the most recently observed event always wins, whatever order the
    fetches resolve in.

    A watchdog forces BOOTSTRAPPING -> ANONYMOUS after `watchdog_delay` seconds.
    It cancels nothing: a session fetch landing afterwards is still applied.

    Profile lookups are best effort, a failed or empty lookup leaves the session
    authenticated with its profile fields set to None.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        lookup_profile: ProfileLookup,
        watchdog_delay: float = WATCHDOG_SECONDS,
    ) -> None:
        self._identity = identity
        self._lookup_profile = lookup_profile
        self._watchdog_delay = watchdog_delay

        self._session: Optional[Session] = None
        self._state = SessionState.BOOTSTRAPPING
        self._generation = 0

        self._started = False
        self._alive = False
        self._closed = False
        self._ready = asyncio.Event()
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._subscription: Optional[Subscription] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: Listeners[SessionManager] = Listeners()

    # ---------------------------
    # Reads
    # ---------------------------

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loading(self) -> bool:
        return self._state is SessionState.BOOTSTRAPPING

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Callable[["SessionManager"], None]) -> Subscription:
        return self._listeners.add(listener)

    async def wait_ready(self) -> SessionState:
        """Wait until the manager has left BOOTSTRAPPING at least once."""
        await self._ready.wait()
        return self._state

    # ---------------------------
    # Lifecycle
    # ---------------------------

    async def initialize(self) -> None:
        """
        Start the bootstrap fetch, the event subscription and the watchdog.
        Returns without waiting for any of them, see `wait_ready`.
        """
        if self._started:
            _logger.debug("Session manager already initialized.")
            return
        self._started = True
        self._alive = True

        loop = asyncio.get_running_loop()
        self._subscription = self._identity.subscribe(self._on_auth_event)
        self._watchdog = loop.call_later(self._watchdog_delay, self._on_watchdog)
        self._spawn(self._bootstrap(self._generation))

    def close(self) -> None:
        """Tear down once: unsubscribe, cancel the watchdog, drop pending work."""
        if self._closed:
            return
        self._closed = True
        self._alive = False

        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._listeners.clear()

    async def __aenter__(self) -> "SessionManager":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    # ---------------------------
    # Provider actions
    # ---------------------------

    async def sign_in(self, email: str, password: str) -> Identity:
        """The session itself is set by the SIGNED_IN event that follows."""
        return await self._identity.sign_in(email, password)

    async def sign_up(self, email: str, password: str) -> Identity:
        return await self._identity.sign_up(email, password)

    async def sign_out(self) -> None:
        """The session is cleared by the SIGNED_OUT event that follows."""
        await self._identity.sign_out()

    async def refresh_profile(self) -> Optional[Session]:
        """Re-read the profile of the current identity and merge it in."""
        session = self._session
        if session is None or not self._alive:
            return session
        try:
            profile = await self._lookup_profile(session.id)
        except Exception as exc:
            _logger.error(f"Error refreshing profile: {exc}")
            return self._session
        if profile is None:
            return self._session
        current = self._session
        if not self._alive or current is None or current.id != session.id:
            return current
        self._session = current.merge_profile(profile)
        self._set_state(SessionState.PROFILE_ENRICHED)
        return self._session

    # ---------------------------
    # Internals
    # ---------------------------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _is_current(self, generation: int) -> bool:
        return self._alive and generation == self._generation

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        if state is not SessionState.BOOTSTRAPPING:
            self._ready.set()
        self._listeners.notify(self)

    async def _bootstrap(self, generation: int) -> None:
        try:
            identity = await self._identity.get_current_session()
        except Exception as exc:
            _logger.error(f"Auth initialization error: {exc}")
            identity = None
        if not self._is_current(generation):
            _logger.debug("Discarding stale bootstrap session.")
            return
        self._apply_identity(identity)

    def _on_auth_event(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        if not self._alive:
            return
        self._generation += 1
        _logger.info(f"Auth event: {event.value}")
        if event is AuthEvent.SIGNED_OUT:
            identity = None
        self._apply_identity(identity)

    def _on_watchdog(self) -> None:
        self._watchdog = None
        if not self._alive or self._state is not SessionState.BOOTSTRAPPING:
            return
        _logger.warning(
            f"Auth check timed out after {self._watchdog_delay:.1f}s. Forcing app to load."
        )
        self._set_state(SessionState.ANONYMOUS)

    def _apply_identity(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self._session = None
            self._set_state(SessionState.ANONYMOUS)
            return

        previous = self._session
        if previous is not None and previous.id == identity.id:
            # same principal (token refresh, user update): keep known profile fields
            session = previous.with_identity(identity)
        else:
            session = Session.from_identity(identity)
        self._session = session
        self._set_state(
            SessionState.PROFILE_ENRICHED
            if session.has_profile
            else SessionState.AUTHENTICATED
        )
        self._spawn(self._enrich(self._generation, identity.id))

    async def _enrich(self, generation: int, user_id: str) -> None:
        try:
            profile = await self._lookup_profile(user_id)
        except Exception as exc:
            _logger.warning(f"Profile lookup failed for {user_id}: {exc}")
            return
        if profile is None:
            _logger.info(f"No profile record for {user_id}, continuing without one.")
            return
        current = self._session
        if not self._is_current(generation) or current is None or current.id != user_id:
            _logger.debug("Discarding stale profile lookup.")
            return
        self._session = current.merge_profile(profile)
        self._set_state(SessionState.PROFILE_ENRICHED)
