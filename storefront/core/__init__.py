# Core modules

from .config import settings, get_settings, Settings
from .observable import Readable, Writable, Derived, MessageChannel
from .session import SessionStore, CookieSessionStore, LocalSessionStore
from .storage import LocalStorage

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "Readable",
    "Writable",
    "Derived",
    "MessageChannel",
    "SessionStore",
    "CookieSessionStore",
    "LocalSessionStore",
    "LocalStorage",
]
