"""
Credential session shared by every API client.

A Session is constructed once at process start and passed by reference to the
ApiClient and anything else that needs to know whether the user is signed in.
Token persistence is delegated to a TokenStore (get/set/remove).

When the backend reports an authentication failure the ApiClient calls
Session.invalidate(). The first call clears the credential and notifies every
subscriber; later calls are suppressed until the next successful login.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from points_exchange.models import LoginResult, UserInfo
from points_exchange.notifications import Notifier
from points_exchange.observability.metrics import session_invalidations_total

logger = logging.getLogger(__name__)

DEFAULT_EXPIRED_MESSAGE = "Session expired, please log in again"

InvalidationListener = Callable[[str], None]


class TokenStore(ABC):
    """Key-value persistence for credentials."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryTokenStore(TokenStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class FileTokenStore(TokenStore):
    """JSON file store used by the CLI so a login survives between commands."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"[TokenStore] Ignoring unreadable token file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        self.path.chmod(0o600)

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)


class Session:
    """
    Holds the bearer credential for one application surface.

    The end-user app and the admin console keep separate credentials, so each
    uses its own ``token_key`` ("token" / "admin_token") in the same store.
    """

    def __init__(self, store: Optional[TokenStore] = None, *, token_key: str = "token"):
        self.store = store or MemoryTokenStore()
        self.token_key = token_key
        self.profile: Optional[UserInfo] = None
        self._listeners: List[InvalidationListener] = []
        self._invalidated = False

    @property
    def credential(self) -> Optional[str]:
        return self.store.get(self.token_key)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.credential)

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    def set(self, credential: str, profile: Optional[UserInfo] = None) -> None:
        self.store.set(self.token_key, credential)
        self.profile = profile
        self._invalidated = False

    def apply_login(self, result: LoginResult) -> None:
        self.set(result.token, result.user_info)

    def clear(self) -> None:
        self.store.remove(self.token_key)
        self.profile = None

    def subscribe(self, listener: InvalidationListener) -> Callable[[], None]:
        """Register for "session invalidated" events; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def invalidate(self, message: Optional[str] = None) -> bool:
        """Clear the credential after an auth failure.

        Returns False when an invalidation is already being handled.
        """
        if self._invalidated:
            logger.debug("[Session] Invalidation already in progress, suppressed")
            return False

        self._invalidated = True
        self.clear()
        session_invalidations_total.inc()
        reason = message or DEFAULT_EXPIRED_MESSAGE
        logger.warning(f"[Session] Credential cleared: {reason}")

        for listener in list(self._listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("[Session] Invalidation listener failed")
        return True


class EntryRedirect:
    """
    Reacts to session invalidation: tell the user, then send them back to the
    unauthenticated entry point unless they are already there.

    Args:
        notifier: where the warning goes
        navigate: moves the UI to the entry (login) state
        at_entry: reports whether the UI is already at the entry state
    """

    def __init__(
        self,
        session: Session,
        notifier: Notifier,
        *,
        navigate: Callable[[], None],
        at_entry: Callable[[], bool],
    ):
        self.notifier = notifier
        self.navigate = navigate
        self.at_entry = at_entry
        self._unsubscribe = session.subscribe(self)

    def __call__(self, message: str) -> None:
        self.notifier.warning(message)
        if self.at_entry():
            return
        self.navigate()

    def detach(self) -> None:
        self._unsubscribe()
