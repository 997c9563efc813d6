from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, HorizontalGroup, VerticalScroll
from textual.events import ScreenResume
from textual.widgets import Button, Label, Rule

from db.models import CartItem
from utils.messages import CartChangedMessage, ModeSwitchedMessage, NewOrderMessage
from utils.pure import format_price
from views.base_screen import BaseScreen
from views.modal_checkout import CheckoutModal
from views.modal_dialog import DialogModal
from views.modal_prod_detail import ProdDetailModal


class CartItemWidget(HorizontalGroup):
    def __init__(self, item: CartItem):
        super().__init__()
        self.item = item

    def compose(self):
        with Container(id="div-cart-item-group"):
            with Container(id="div-item"):
                yield Label(self.item.name, id="label-item-name")
                # unique goods, quantity is always one
                yield Label("Qty 1", id="label-item-qty")
                yield Label(format_price(self.item.price), id="label-item-price")
            with Container(id="div-actions"):
                yield Button("Details", id="btn-item-details")
                yield Button("Remove", id="btn-item-remove", variant="error")

    @on(Button.Pressed, "#btn-item-details")
    @work()
    async def handle_details(self):
        await self.app.push_screen_wait(ProdDetailModal(self.item.id))

    @on(Button.Pressed, "#btn-item-remove")
    @work()
    async def handle_remove_item(self):
        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                f"Remove {self.item.name} from your cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        )
        if remove_confirmed:
            self.app.state.cart.remove_item(self.item.id)
            self.app.state.toasts.info("Item removed from cart.")


class CartScreen(BaseScreen):
    """
    cart content, total and checkout
    """

    def __init__(self) -> None:
        super().__init__()

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield VerticalScroll(id="vertscroll-content")
        yield Label(f"Total: {format_price(0)}", id="label-cart-total")
        yield Rule(line_style="dashed")
        with Horizontal(id="hort-buttons"):
            yield Button("Clear Cart", id="btn-clear-cart")
            yield Button("Checkout", id="btn-checkout", variant="primary")

    async def on_mount(self):
        self.handle_cart_change()

    @on(CartChangedMessage)
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @work(exclusive=True)  # exclusive, otherwise rows could be mounted twice
    async def handle_cart_change(self):
        """
        Re-render the cart from the store
        """
        cart = self.app.state.cart
        cart_items = list(cart.items)

        content = self.query_one("#vertscroll-content")
        shown = [c.item for c in content.children if isinstance(c, CartItemWidget)]
        if shown != cart_items or not content.children:
            await content.remove_children()
            if cart_items:
                await content.mount_all([CartItemWidget(item) for item in cart_items])
            else:
                await content.mount(Label("Your cart is empty.", id="label-empty"))

        content.set_class(not cart_items, "no-items")
        self.query_one("#label-cart-total", Label).update(
            f"Total: {format_price(cart.total())}"
        )

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        state = self.app.state
        if not len(state.cart):
            state.toasts.info("Cart is empty.")
            return

        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove all items from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        )
        if remove_confirmed:
            state.cart.clear()

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        state = self.app.state
        if not len(state.cart):
            state.toasts.info("Cart is empty.")
            return
        if state.session.session is None:
            state.toasts.info("Please log in to check out.")
            self.app.request_login()
            return

        if await self.app.push_screen_wait(CheckoutModal()):
            self.app.post_message(NewOrderMessage())
