import asyncio

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Label, Markdown

import db.crud as crud
from utils.errors import KurasiError, NotFoundError
from utils.pure import format_price, format_rating, generate_markdown_table


class SellerModal(ModalScreen[None]):
    """
    storefront of one seller: contact card, rating over all their products
    and their listings, newest first
    """

    BINDINGS = [("escape", "close", "Back")]

    def __init__(self, seller_id: str) -> None:
        super().__init__()

        self._seller_id = seller_id

    def compose(self) -> ComposeResult:
        with Vertical(id="div-seller"):
            yield Markdown("Loading seller profile...", id="md-seller")
            yield DataTable(id="table-seller-products")
            yield Label("", id="label-seller-cnt")
            with Horizontal(id="hort-seller-btns"):
                yield Button("Go Back", id="btn-seller-back")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Name", "Category", "Price", "Status")
        self.load_seller()

    def action_close(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#btn-seller-back")
    def handle_back(self) -> None:
        self.dismiss(None)

    @work(exclusive=True, group="load")
    async def load_seller(self) -> None:
        state = self.app.state
        data = state.platform.data
        try:
            seller, products, ratings = await asyncio.gather(
                crud.get_seller(data, self._seller_id),
                crud.list_seller_products(data, self._seller_id),
                crud.seller_ratings(data, self._seller_id),
            )
        except KurasiError as exc:
            state.toasts.report(exc)
            return
        if seller is None:
            state.toasts.report(NotFoundError("Seller not found."))
            self.dismiss(None)
            return

        rows = [
            ["Status", "Verified Seller"],
            ["Rating", format_rating(ratings)],
            ["Address", seller.address or "-"],
            ["Phone", seller.phone or "-"],
        ]
        if seller.avatar_url:
            rows.append(["Avatar", f"[view]({seller.avatar_url})"])
        md = f"### {seller.full_name or 'Seller'}\n\n" + generate_markdown_table(
            ["Attribute", "Value"], rows, ["l", "l"]
        )
        await self.query_one("#md-seller", Markdown).update(md)

        table = self.query_one(DataTable)
        table.clear()
        for p in products:
            table.add_row(
                p.name,
                p.category,
                format_price(p.price),
                "Sold Out" if p.is_sold else "Available",
                key=p.id,
            )
        self.query_one("#label-seller-cnt", Label).update(
            f"{len(products)} product(s) listed"
        )

    @on(DataTable.RowSelected)
    def handle_row_selected(self, event: DataTable.RowSelected) -> None:
        self.open_detail(event.row_key.value)

    @work()
    async def open_detail(self, product_id: str) -> None:
        # imported here, the product detail opens this modal too
        from views.modal_prod_detail import ProdDetailModal

        await self.app.push_screen_wait(ProdDetailModal(product_id))
