import asyncio
from pathlib import Path
from typing import Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Markdown, MarkdownViewer, Select

import db.crud as crud
from db.models import ImageFile, Product, ReviewDraft
from stores.reviews import ReviewGate
from utils.errors import KurasiError, NotFoundError, ValidationError
from utils.messages import ReviewsChangedMessage
from utils.pure import format_price, format_rating, generate_markdown_table
from views.modal_seller import SellerModal


class ProdDetailModal(ModalScreen[bool]):
    """
    Product detail, add to cart, reviews and the purchase-gated review form.
    Returns True if the cart changed.
    """

    BINDINGS = [("escape", "close", "Back")]

    def __init__(self, product_id: str) -> None:
        super().__init__()

        self._product_id = product_id
        self._prod: Optional[Product] = None
        self._cart_changed = False
        self._gate: Optional[ReviewGate] = None
        self._gate_sub = None

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-prod-detail"):
            yield MarkdownViewer("", show_table_of_contents=False, id="md-prod")
            with VerticalScroll(id="vert-prod-side"):
                yield Label("", id="label-rating")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Add to Cart", id="btn-addcart", variant="primary")
                yield Button("View Seller", id="btn-seller", disabled=True)
                with Vertical(id="div-review-form"):
                    yield Label("Write a Review")
                    yield Select(
                        [(f"{'*' * i} ({i})", i) for i in range(5, 0, -1)],
                        value=5,
                        allow_blank=False,
                        id="select-rating",
                    )
                    yield Input(placeholder="Share your experience...", id="input-comment")
                    yield Input(placeholder="Photo path (optional)", id="input-image")
                    yield Button("Submit Review", id="btn-review", variant="success")
                yield Markdown("", id="md-reviews")

    async def on_mount(self):
        state = self.app.state
        self._gate = state.review_gate(self._product_id)
        self._gate_sub = self._gate.subscribe(
            lambda _: self.post_message(ReviewsChangedMessage())
        )
        self._gate.open()
        self.query_one("#div-review-form").display = False
        self.load_product()

    def on_unmount(self):
        if self._gate_sub is not None:
            self._gate_sub.unsubscribe()
        if self._gate is not None:
            self._gate.close()

    def action_close(self) -> None:
        self.dismiss(self._cart_changed)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(self._cart_changed)

    @work(exclusive=True, group="load")
    async def load_product(self) -> None:
        state = self.app.state
        data = state.platform.data
        try:
            self._prod = await crud.get_product(data, self._product_id)
        except NotFoundError as exc:
            state.toasts.report(exc)
            self.dismiss(False)
            return
        except KurasiError as exc:
            state.toasts.report(exc)
            return

        prod = self._prod
        try:
            seller, seller_ratings = await asyncio.gather(
                crud.get_seller(data, prod.seller_id),
                crud.seller_ratings(data, prod.seller_id),
            )
        except KurasiError as exc:
            state.toasts.report(exc)
            seller, seller_ratings = None, []

        rows = [
            ["Price", format_price(prod.price)],
            ["Category", prod.category],
            ["Status", "Sold Out" if prod.is_sold else "Available"],
            ["Seller", seller.full_name if seller and seller.full_name else "-"],
            ["Seller Rating", format_rating(seller_ratings)],
        ]
        md = (
            f"### {prod.name}\n\n"
            + generate_markdown_table(["Attribute", "Value"], rows, ["l", "l"])
            + f"\n\n{prod.description}\n"
        )
        await self.query_one("#md-prod", MarkdownViewer).document.update(md)

        self.query_one("#btn-seller", Button).disabled = seller is None
        self._render_cart_button()
        try:
            await asyncio.gather(self._gate.load_reviews(), self._gate.refresh())
        except KurasiError as exc:
            state.toasts.report(exc)

    def _render_cart_button(self) -> None:
        btn = self.query_one("#btn-addcart", Button)
        if self._prod is not None and self._prod.is_sold:
            btn.label = "Sold Out"
            btn.disabled = True
            btn.variant = "warning"
        elif self._product_id in self.app.state.cart:
            btn.label = "In Cart"
            btn.disabled = True
        else:
            btn.label = "Add to Cart"
            btn.disabled = False

    @on(ReviewsChangedMessage)
    async def render_reviews(self) -> None:
        gate = self._gate
        self.query_one("#div-review-form").display = gate.eligible
        self.query_one("#label-rating", Label).update(f"Rating: {gate.summary}")

        if not gate.reviews:
            md = "#### Reviews\n\nNo reviews yet."
        else:
            entries = [
                f"**{'*' * r.rating}** {r.comment}"
                + (f"  \n[photo]({r.image_url})" if r.image_url else "")
                + f"  \n_{(r.created_at or '')[:10]}_"
                for r in gate.reviews
            ]
            md = "#### Reviews\n\n" + "\n\n---\n\n".join(entries)
        await self.query_one("#md-reviews", Markdown).update(md)

    @on(Button.Pressed, "#btn-seller")
    @work()
    async def handle_view_seller(self) -> None:
        if self._prod is None:
            return
        await self.app.push_screen_wait(SellerModal(self._prod.seller_id))

    @on(Button.Pressed, "#btn-addcart")
    def handle_addcart(self):
        if self._prod is None:
            return
        cart = self.app.state.cart
        if self._prod.id in cart:
            self.app.state.toasts.info("This item is already in your cart.")
            return
        cart.add_item(self._prod)
        self._cart_changed = True
        self.app.state.toasts.success("Product added to cart!")
        self._render_cart_button()

    def _build_draft(self) -> ReviewDraft:
        session = self.app.state.session.session
        image = None
        image_path = self.query_one("#input-image", Input).value.strip()
        if image_path:
            path = Path(image_path).expanduser()
            try:
                image = ImageFile.from_path(path)
            except OSError as exc:
                raise ValidationError(f"Could not read photo: {exc.strerror}") from exc
        return ReviewDraft(
            product_id=self._product_id,
            user_id=session.id if session else "",
            rating=self.query_one("#select-rating", Select).value,
            comment=self.query_one("#input-comment", Input).value,
            image=image,
        )

    @on(Button.Pressed, "#btn-review")
    @work(exclusive=True, group="review")
    async def handle_submit_review(self) -> None:
        toasts = self.app.state.toasts
        btn = self.query_one("#btn-review", Button)
        btn.disabled = True
        try:
            await self._gate.submit_review(self._build_draft())
        except KurasiError as exc:
            # the form keeps its content so the user can retry
            toasts.report(exc)
            return
        finally:
            btn.disabled = False

        self.query_one("#input-comment", Input).value = ""
        self.query_one("#input-image", Input).value = ""
        self.query_one("#select-rating", Select).value = 5
        toasts.success("Thank you for your review!")
