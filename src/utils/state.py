from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Optional

import db.crud as crud
from db.kv_store import FileKeyValueStore
from db.local_platform import open_local_platform
from db.models import Session
from db.platform import KeyValueStore, Platform
from stores.cart import CartStore
from stores.reviews import ReviewGate
from stores.session import SessionManager
from stores.toasts import ToastQueue
from utils.config import Settings


@dataclass
class GlobalState:
    """
    Owned application state handed to every screen.

    Fields:
      - platform: data/auth/storage capabilities
      - session: single writer of the current Session
      - cart: persistent cart, sole owner of its storage key
      - toasts: process-wide notification queue
    """

    settings: Settings
    platform: Platform
    session: SessionManager
    cart: CartStore
    toasts: ToastQueue

    @classmethod
    def create(
        cls,
        settings: Settings,
        platform: Optional[Platform] = None,
        kv: Optional[KeyValueStore] = None,
    ) -> "GlobalState":
        kv = kv or FileKeyValueStore(settings.kv_path)
        platform = platform or open_local_platform(settings, kv)
        return cls(
            settings=settings,
            platform=platform,
            session=SessionManager(
                platform.identity,
                partial(crud.get_profile, platform.data),
                watchdog_delay=settings.watchdog_seconds,
            ),
            cart=CartStore(kv, settings.cart_key),
            toasts=ToastQueue(settings.toast_seconds),
        )

    @property
    def user(self) -> Optional[Session]:
        return self.session.session

    async def start(self) -> None:
        await self.session.initialize()

    def close(self) -> None:
        self.session.close()
        self.toasts.close()

    def review_gate(self, product_id: str) -> ReviewGate:
        return ReviewGate(
            self.platform.data, self.session, self.platform.storage, product_id
        )
