from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import Button, Input, Label, TabbedContent, TabPane

from utils.errors import KurasiError
from views.base_screen import BaseScreen


class LoginScreen(BaseScreen):
    """
    Sign in / sign up.
    Dismisses with True once the provider accepted the credentials; the
    session itself arrives through the session manager.
    """

    BINDINGS = [Binding("escape", "back", "Back", show=True)]

    def __init__(self):
        super().__init__()
        self.configure(header_sub_title="Log in", show_sidebar=False)

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with TabbedContent(id="super-tab-loginscr"):
            with TabPane("Log in", id="tab-login"):
                with Vertical(id="div-login"):
                    yield Label("Email")
                    yield Input(placeholder="you@example.com", id="input-login-email")
                    yield Label("Password")
                    yield Input(placeholder="********", password=True, id="input-login-pwd")
                    with Horizontal(id="div-login-btns"):
                        yield Button("Back", id="btn-back")
                        yield Button("Log in", id="btn-login", variant="primary")

            with TabPane("Sign up", id="tab-signup"):
                with Vertical(id="div-reg"):
                    yield Label("Email")
                    yield Input(placeholder="you@example.com", id="input-reg-email")
                    yield Label("Password")
                    yield Input(placeholder="********", password=True, id="input-reg-pwd")
                    yield Label("Confirm Password")
                    yield Input(placeholder="********", password=True, id="input-reg-pwd2")
                    with Container(id="div-reg-btns"):
                        yield Button("Create Account", id="btn-reg", variant="primary")

    def on_mount(self):
        self.query_one("#input-login-email").focus()

    def action_back(self) -> None:
        self.dismiss(False)

    @on(Button.Pressed, "#btn-back")
    def handle_back(self) -> None:
        self.dismiss(False)

    @on(Input.Submitted, "#input-login-pwd")
    @on(Button.Pressed, "#btn-login")
    @work(exclusive=True)
    async def handle_login_submit(self) -> None:
        toasts = self.app.state.toasts
        email = self.query_one("#input-login-email", Input).value.strip()
        pwd_input = self.query_one("#input-login-pwd", Input)
        pwd = pwd_input.value

        if not email or not pwd:
            toasts.error("Email or password cannot be empty!")
            return

        try:
            identity = await self.app.state.session.sign_in(email, pwd)
        except KurasiError as exc:
            toasts.report(exc)
            pwd_input.value = ""
            pwd_input.focus()
            pwd_input.add_class("-invalid")
            return

        toasts.success(f"Welcome back, {identity.email}!")
        self.dismiss(True)

    @on(Input.Submitted, "#input-reg-pwd2")
    @on(Button.Pressed, "#btn-reg")
    @work(exclusive=True)
    async def handle_registration_submit(self) -> None:
        toasts = self.app.state.toasts
        email = self.query_one("#input-reg-email", Input).value.strip()
        pwd = self.query_one("#input-reg-pwd", Input).value
        pwd2_input = self.query_one("#input-reg-pwd2", Input)

        if not email or not pwd:
            toasts.error("Make sure all inputs are filled.")
            return
        if pwd != pwd2_input.value:
            toasts.error("Passwords do not match")
            pwd2_input.add_class("-invalid")
            pwd2_input.focus()
            return

        try:
            identity = await self.app.state.session.sign_up(email, pwd)
        except KurasiError as exc:
            toasts.report(exc)
            return

        toasts.success("Registration successful! You can log in now.")
        self.query_one(TabbedContent).active = "tab-login"
        self.query_one("#input-login-email", Input).value = identity.email
        login_pwd = self.query_one("#input-login-pwd", Input)
        login_pwd.value = pwd
        login_pwd.focus()
