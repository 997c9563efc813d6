from typing import Set

from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from stores.toasts import ToastQueue
from utils.config import get_settings
from utils.logger import get_logger
from utils.messages import ModeSwitchedMessage, QuitRequestedMessage
from utils.state import GlobalState
from views.scr_cart import CartScreen
from views.scr_catalog import CatalogScreen
from views.scr_login import LoginScreen
from views.scr_past_orders import PastOrdersScreen
from views.scr_profile import ProfileScreen

_logger = get_logger(__name__)

# textual notification severities
TOAST_SEVERITY = {"success": "information", "info": "information", "error": "error"}


class KurasiApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "catalog": CatalogScreen,
        "cart": CartScreen,
        "orders": PastOrdersScreen,
        "profile": ProfileScreen,
    }

    MENU = {
        "catalog": "Browse Products",
        "cart": "Cart",
        "orders": "My Orders",
        "profile": "Profile",
    }

    # only reachable with a session
    MEMBER_MODES = {"orders", "profile"}

    CSS_PATH = "views/styles/kurasi.tcss"

    state: GlobalState

    def __init__(self, state: GlobalState | None = None):
        super().__init__()
        self.state = state or GlobalState.create(get_settings())
        self._toast_sub = None
        self._shown_toasts: Set[int] = set()

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self._toast_sub = self.state.toasts.subscribe(self._on_toasts)
        await self.state.start()
        self.main_flow()

    async def on_unmount(self) -> None:
        if self._toast_sub is not None:
            self._toast_sub.unsubscribe()
        self.state.close()

    def _on_toasts(self, queue: ToastQueue) -> None:
        """
        Mirror newly pushed toasts to textual notifications.
        The queue stays the source of truth for what is visible.
        """
        current = {t.id for t in queue.toasts}
        for toast in queue.toasts:
            if toast.id in self._shown_toasts:
                continue
            self.notify(
                toast.message,
                severity=TOAST_SEVERITY.get(toast.kind, "information"),
                timeout=queue.lifetime,
            )
        self._shown_toasts = current

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.state.toasts.info(f"Theme changed to {self.theme}")

    async def open_mode(self, mode: str) -> None:
        """
        Switch to a menu entry, guests are sent to login for member-only modes.
        """
        if mode in self.MEMBER_MODES and self.state.user is None:
            self.state.toasts.info("Please log in to continue.")
            self.request_login()
            return

        old_mode = self.current_mode
        await self.switch_mode(mode)
        self.screen.post_message(ModeSwitchedMessage(old_mode, mode))

    @work(exclusive=True, group="login")
    async def request_login(self):
        await self.push_screen_wait(LoginScreen())

    @on(QuitRequestedMessage)
    def handle_quit(self):
        self.exit()

    @work
    async def main_flow(self):
        state = await self.state.session.wait_ready()
        _logger.info(f"Session ready: {state.value}")
        await self.open_mode("catalog")


def run() -> None:
    KurasiApp().run()


if __name__ == "__main__":
    run()
