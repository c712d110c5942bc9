"""Authorization state handed to everything downstream of login.

Consumers only ever see the derived booleans on ``AuthState``. Rank is
never re-derived from role ids here; that belongs to ``roles.map_roles``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from clan_common.identity.resolver import ProfileSummary

logger = logging.getLogger(__name__)

ProfileLoader = Callable[[str], Awaitable[Optional[ProfileSummary]]]
Listener = Callable[["AuthState"], None]


@dataclass(frozen=True)
class AuthState:
    session: Optional[str] = None
    profile: Optional[ProfileSummary] = None
    loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    @property
    def is_admin(self) -> bool:
        return bool(self.profile and self.profile.is_admin)

    @property
    def has_access(self) -> bool:
        if self.profile is None:
            return False
        return self.profile.is_admin or self.profile.rank is not None


class AuthContext:
    """Tracks the current session and its resolved profile.

    A session change never loads the profile inline: the load is scheduled
    for the next loop iteration so a listener firing inside the session
    notification cannot re-enter it.
    """

    def __init__(self, loader: ProfileLoader):
        self._loader = loader
        self._state = AuthState()
        self._listeners: list[Listener] = []
        self._pending: Optional[asyncio.Task] = None

    @property
    def state(self) -> AuthState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, state: AuthState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def on_session_changed(self, session: Optional[str]) -> None:
        """Record a new (or cleared) session and schedule the profile load."""
        if session is None:
            self._publish(AuthState())
            return
        self._publish(AuthState(session=session, loading=True))
        asyncio.get_running_loop().call_soon(self._start_load, session)

    def _start_load(self, session: str) -> None:
        self._pending = asyncio.ensure_future(self._load(session))

    async def _load(self, session: str) -> None:
        try:
            profile = await self._loader(session)
        except Exception as exc:
            logger.error("Profile load failed: %s", exc, exc_info=True)
            # Keep the last known profile; only a first load falls back to none
            profile = self._state.profile
        if self._state.session != session:
            # Superseded by a later session change
            return
        self._publish(AuthState(session=session, profile=profile))

    async def refresh(self) -> AuthState:
        """Reload the profile for the current session (roles may have changed)."""
        if self._state.session is None:
            return self._state
        await self._load(self._state.session)
        return self._state

    async def settled(self) -> AuthState:
        """Wait for any scheduled profile load to finish."""
        await asyncio.sleep(0)
        if self._pending is not None:
            await self._pending
        return self._state

    def logout(self) -> None:
        self.on_session_changed(None)
