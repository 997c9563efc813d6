from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import Screen
from textual.widgets import Button, Footer, Header, Label, ListItem, ListView, Markdown

from utils.errors import KurasiError
from utils.messages import CartChangedMessage, ModeSwitchedMessage, SessionChangedMessage
from utils.pure import format_price, generate_markdown_table
from views.modal_dialog import DialogModal, QuitDialogModal


class Sidebar(Container):
    """
    Account summary, login/logout and the mode menu.

    The sidebar is the bridge between the stores and textual: it listens to the
    session manager and the cart and posts Session/CartChanged messages, which
    bubble up to the screen it lives in.
    """

    init_mode = ""

    def compose(self) -> ComposeResult:
        yield Label("Account", id="label-info-1")
        yield Markdown("", id="md-userinfo")
        yield Button("Log in", id="btn-login", variant="primary")
        yield Button("Log out", id="btn-logout", variant="error")
        yield Label("Menu", id="label-info-2")
        yield ListView(
            *[
                ListItem(Label(v), id="list-menu-item-" + k)
                for k, v in self.app.MENU.items()
            ],
            id="list-menu",
        )

    async def on_mount(self):
        self.init_mode = self.app.current_mode
        state = self.app.state
        self._subscriptions = [
            state.session.subscribe(lambda _: self.post_message(SessionChangedMessage())),
            state.cart.subscribe(lambda _: self.post_message(CartChangedMessage())),
        ]
        await self.render_account()
        self.highlight_item(self.init_mode)

    def on_unmount(self):
        for sub in self._subscriptions:
            sub.unsubscribe()

    @on(SessionChangedMessage)
    @on(CartChangedMessage)
    async def render_account(self):
        state = self.app.state
        session = state.session.session

        if state.session.is_loading:
            md = "Loading Kurasi..."
        elif session is None:
            md = "Browsing as guest."
        else:
            md = generate_markdown_table(
                None,
                [
                    ["Name", session.display_name],
                    ["Email", session.email],
                    ["Role", session.effective_role.capitalize()],
                ],
                ["l", "l"],
            )
        cart = state.cart
        md += f"\n\nCart: {len(cart)} item(s), {format_price(cart.total())}"
        if cart.is_open and len(cart):
            md += "\n\n" + "\n".join(
                f"- {item.name} ({format_price(item.price)})" for item in cart.items
            )
        await self.query_one("#md-userinfo", Markdown).update(md)

        self.query_one("#btn-login").display = session is None
        self.query_one("#btn-logout").display = session is not None

    async def on_list_view_selected(self, event: ListView.Selected):
        selected_mode = event.item.id.removeprefix("list-menu-item-")
        self.highlight_item(self.init_mode)
        await self.app.open_mode(selected_mode)

    @on(Button.Pressed, "#btn-login")
    def handle_login(self):
        self.app.request_login()

    @on(Button.Pressed, "#btn-logout")
    @work(exclusive=True)
    async def handle_logout(self):
        if not await self.app.push_screen_wait(
            DialogModal(
                "Are you sure you want to log out?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        ):
            return

        state = self.app.state
        try:
            await state.session.sign_out()
        except KurasiError as exc:
            state.toasts.report(exc)
            return
        state.toasts.info("Logout successful.")
        if self.app.current_mode in self.app.MEMBER_MODES:
            await self.app.open_mode("catalog")

    def highlight_item(self, mode_str: str):
        list_menu = self.query_one("#list-menu", ListView)
        for item in list_menu.children:
            item.highlighted = item.id == "list-menu-item-" + mode_str


class BaseScreen(Screen):
    """
    Inherited by all screens, contains common elements like
    headers, footers, sidebar, and keybindings.
    """

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit", show=True),
        Binding("ctrl+o", "peek_cart", "Peek Cart", show=True),
    ]

    def __init__(self):
        super().__init__()

        self.configure()

    def configure(
        self,
        header_sub_title: str = "",
        show_sidebar: bool = True,
    ) -> None:
        """
        configure behavior of the base screen
        """
        self.app.title = "Kurasi"
        self.sub_title = header_sub_title
        for k, v in self.app.MODES.items():
            if isinstance(self, v):
                self.sub_title = self.app.MENU.get(k, header_sub_title)

        self._show_sidebar = show_sidebar

    def compose(self) -> ComposeResult:
        if self._show_sidebar:
            yield Sidebar()
        yield Header()
        yield Footer(show_command_palette=False)

    @on(ModeSwitchedMessage)
    def handle_mode_switched(self, message: ModeSwitchedMessage):
        for sidebar in self.query(Sidebar):
            sidebar.highlight_item(message.new_mode)

    def action_peek_cart(self) -> None:
        # listing shows up in the sidebar through the cart listener
        self.app.state.cart.toggle_visibility()

    @work()
    async def action_quit(self):
        await self.app.push_screen_wait(QuitDialogModal())
