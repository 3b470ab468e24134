"""Runtime dependencies handed to every component."""

import threading
from typing import Optional

import requests

from .commerce import CommerceClient
from .config import Settings
from .http import build_session
from .state import KVStore


class Services:
    """
    Settings + KV store + HTTP session, with the commerce client built on
    first use (so routes that never touch commerce work without its config).
    """

    def __init__(self, settings: Settings, store: KVStore,
                 commerce: Optional[CommerceClient] = None,
                 session: Optional[requests.Session] = None):
        self.settings = settings
        self.store = store
        self.session = session or build_session()
        self._commerce = commerce
        self._lock = threading.Lock()

    @property
    def commerce(self) -> CommerceClient:
        if self._commerce is None:
            with self._lock:
                if self._commerce is None:
                    self._commerce = CommerceClient(self.settings, self.store)
        return self._commerce
