from pathlib import Path

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.events import ScreenResume
from textual.widgets import Button, Input, Label, Rule

import db.crud
from db.models import ImageFile
from utils.errors import KurasiError, ValidationError
from utils.messages import ModeSwitchedMessage, SessionChangedMessage
from views.base_screen import BaseScreen


class ProfileScreen(BaseScreen):
    """
    contact details and avatar of the signed-in member, and the seller request form
    """

    def __init__(self) -> None:
        super().__init__()

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with VerticalScroll(id="vertscroll-profile"):
            with Vertical(id="div-profile"):
                yield Label("", id="label-profile-email")
                yield Label("Full Name")
                yield Input(id="input-full-name")
                yield Label("Phone")
                yield Input(id="input-phone")
                yield Label("Address")
                yield Input(id="input-address")
                yield Label("Avatar")
                yield Label("", id="label-avatar-url")
                with Horizontal(id="hort-avatar"):
                    yield Input(placeholder="Image path", id="input-avatar")
                    yield Button("Upload", id="btn-avatar")
                with Horizontal(id="hort-profile-btns"):
                    yield Button("Save", id="btn-save-profile", variant="primary")
            yield Rule(line_style="dashed")
            with Vertical(id="div-seller-request"):
                yield Label("Become a Seller", id="label-seller-title")
                yield Input(placeholder="Shop name", id="input-shop-name")
                yield Input(placeholder="What will you sell?", id="input-shop-desc")
                yield Button("Send Request", id="btn-seller-request", variant="success")

    def on_mount(self) -> None:
        self.render_profile()

    @on(SessionChangedMessage)
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    def render_profile(self) -> None:
        session = self.app.state.session.session
        if session is None:
            self.query_one("#label-profile-email", Label).update("Not logged in.")
            return

        self.query_one("#label-profile-email", Label).update(
            f"{session.email} ({session.effective_role})"
        )
        # don't clobber what the user is typing
        for field in ("full_name", "phone", "address"):
            inp = self.query_one(f"#input-{field.replace('_', '-')}", Input)
            if not inp.has_focus:
                inp.value = getattr(session, field) or ""
        self.query_one("#label-avatar-url", Label).update(session.avatar_url or "No avatar yet.")
        self.query_one("#div-seller-request").display = session.effective_role == "member"

    @on(Button.Pressed, "#btn-save-profile")
    @work(exclusive=True, group="profile")
    async def handle_save(self) -> None:
        state = self.app.state
        session = state.session.session
        if session is None:
            self.app.request_login()
            return

        try:
            await db.crud.update_profile(
                state.platform.data,
                session.id,
                full_name=self.query_one("#input-full-name", Input).value,
                phone=self.query_one("#input-phone", Input).value,
                address=self.query_one("#input-address", Input).value,
            )
        except KurasiError as exc:
            state.toasts.report(exc)
            return

        await state.session.refresh_profile()
        state.toasts.success("Profile updated successfully!")

    @on(Button.Pressed, "#btn-seller-request")
    @work(exclusive=True, group="seller")
    async def handle_seller_request(self) -> None:
        state = self.app.state
        session = state.session.session
        if session is None:
            self.app.request_login()
            return

        shop_name = self.query_one("#input-shop-name", Input)
        shop_desc = self.query_one("#input-shop-desc", Input)
        try:
            await db.crud.request_seller(
                state.platform.data, session.id, shop_name.value, shop_desc.value
            )
        except KurasiError as exc:
            state.toasts.report(exc)
            return

        shop_name.value = ""
        shop_desc.value = ""
        state.toasts.success("Request sent successfully! Please wait for admin approval.")

    @on(Button.Pressed, "#btn-avatar")
    @work(exclusive=True, group="profile")
    async def handle_upload_avatar(self) -> None:
        state = self.app.state
        session = state.session.session
        if session is None:
            self.app.request_login()
            return

        avatar = self.query_one("#input-avatar", Input)
        btn = self.query_one("#btn-avatar", Button)
        btn.disabled = True
        try:
            raw_path = avatar.value.strip()
            if not raw_path:
                raise ValidationError("You must select an image to upload.")
            try:
                image = ImageFile.from_path(Path(raw_path).expanduser())
            except OSError as exc:
                raise ValidationError(f"Could not read image: {exc.strerror}") from exc
            await db.crud.upload_avatar(
                state.platform.data, state.platform.storage, session.id, image
            )
        except KurasiError as exc:
            state.toasts.report(exc)
            return
        finally:
            btn.disabled = False

        avatar.value = ""
        await state.session.refresh_profile()
        state.toasts.success("Avatar updated!")
