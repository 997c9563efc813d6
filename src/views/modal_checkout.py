from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer, RadioButton, RadioSet

import db.crud as crud
from utils.errors import KurasiError
from utils.pure import format_price, generate_markdown_table
from views.modal_dialog import DialogModal


class CheckoutModal(ModalScreen[bool]):
    """
    Order summary, shipping address and payment method.
    Returns True once the order is placed, the cart is cleared at that point.
    """

    BINDINGS = [("escape", "close", "Back")]

    def compose(self) -> ComposeResult:
        with Vertical():
            yield MarkdownViewer("", show_table_of_contents=False)
            yield Label("Shipping Address")
            yield Input(placeholder="Enter your full address...", id="input-address-line")
            yield Label("Payment Method")
            with RadioSet(id="radio-payment"):
                yield RadioButton("Manual bank transfer", value=True, id="manual_transfer")
                yield RadioButton("Cash on delivery", id="cod")
            with Horizontal():
                yield Button("Go Back", id="btn-quit")
                yield Button("Place Order", id="btn-submit", variant="primary")

    async def on_mount(self):
        state = self.app.state
        cart = state.cart
        rows = [[item.name, "1", format_price(item.price)] for item in cart.items]
        md = "### Order Summary\n\n" + generate_markdown_table(
            ["Product", "Qty", "Price"], rows, ["l", "c", "r"]
        )
        md += f"\n\n**Total:** {format_price(cart.total())}"
        await self.query_one(MarkdownViewer).document.update(md)

        session = state.session.session
        address_input = self.query_one("#input-address-line", Input)
        if session is not None and session.address:
            address_input.value = session.address
        address_input.focus()

    def action_close(self) -> None:
        self.dismiss(False)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    def _payment_method(self) -> str:
        pressed = self.query_one("#radio-payment", RadioSet).pressed_button
        return pressed.id if pressed is not None else "manual_transfer"

    @on(Button.Pressed, "#btn-submit")
    @work(exclusive=True)
    async def handle_submit(self):
        state = self.app.state
        address_input = self.query_one("#input-address-line", Input)
        address_line = address_input.value.strip()
        if not address_line:
            address_input.focus()
            address_input.add_class("-invalid")
            state.toasts.error("Please provide a shipping address")
            return

        session = state.session.session
        if session is None:
            state.toasts.error("Your session has ended, please log in again.")
            self.dismiss(False)
            return

        if not await self.app.push_screen_wait(
            DialogModal(
                "Place order? This cannot be undone.",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            return

        try:
            await crud.place_order(
                state.platform.data,
                session.id,
                state.cart.items,
                address_line,
                self._payment_method(),
            )
        except KurasiError as exc:
            # no retry, the form stays filled in
            state.toasts.report(exc)
            return

        state.cart.clear()
        state.toasts.success("Order placed successfully!")
        self.dismiss(True)
