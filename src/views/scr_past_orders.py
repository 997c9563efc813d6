from math import ceil
from typing import Dict, List, Tuple

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.reactive import reactive
from textual.widgets import Button, DataTable, Label, MarkdownViewer

import db.crud
from db.crud import COMPLETED_ORDER_STATUSES
from db.models import Order, OrderItem, Product
from utils.errors import KurasiError
from utils.messages import ModeSwitchedMessage, NewOrderMessage, SessionChangedMessage
from utils.pure import format_price, generate_markdown_table
from views.base_screen import BaseScreen

PAGE_SIZE = 5

PAYMENT_LABELS = {"manual_transfer": "Manual bank transfer", "cod": "Cash on delivery"}


class PastOrdersScreen(BaseScreen):
    """
    Members browse their order history, newest first, and see the lines of the
    highlighted order.

    Layout:
    - Markdown detail view at the top
    - Orders table below, 5 per page with Prev/Next
    """

    BINDINGS = [
        Binding("enter", "noop", "View Order Detail", show=True, key_display="⏎"),
    ]

    page_idx = reactive(1, init=False)
    page_cnt = reactive(1, init=False)

    def __init__(self) -> None:
        super().__init__()
        self._orders: List[Tuple[Order, List[OrderItem]]] = []
        self._products: Dict[str, Product] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-order-detail", show_table_of_contents=False)
            yield DataTable(id="table-orders")
        with Horizontal(id="hort-table-control"):
            yield Button("Refresh", id="btn-refresh")
            yield Button("<", id="btn-prev")
            yield Label("1 / 1", id="label-page")
            yield Button(">", id="btn-next")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Date", "Status", "Items", "Total")

    def action_noop(self) -> None:
        pass

    @on(Button.Pressed, "#btn-refresh")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(NewOrderMessage)
    @on(SessionChangedMessage)
    def handle_refresh(self) -> None:
        self._load_orders()

    @on(Button.Pressed, "#btn-prev")
    def handle_prev(self) -> None:
        if self.page_idx > 1:
            self.page_idx -= 1

    @on(Button.Pressed, "#btn-next")
    def handle_next(self) -> None:
        if self.page_idx < self.page_cnt:
            self.page_idx += 1

    def watch_page_idx(self) -> None:
        self._render_page()

    @work(exclusive=True, group="orders")
    async def _load_orders(self) -> None:
        state = self.app.state
        session = state.session.session
        if session is None:
            self._orders, self._products = [], {}
            self._render_page()
            return

        data = state.platform.data
        try:
            orders = await db.crud.list_orders(data, session.id)
            product_ids = sorted({ln.product_id for _, lines in orders for ln in lines})
            products = await db.crud.get_products(data, product_ids)
        except KurasiError as exc:
            state.toasts.report(exc)
            return

        self._orders, self._products = orders, products
        self.page_cnt = max(ceil(len(orders) / PAGE_SIZE), 1)
        if self.page_idx > self.page_cnt or self.page_idx < 1:
            self.page_idx = 1
        self._render_page()

    def _render_page(self) -> None:
        table = self.query_one(DataTable)
        table.clear()
        start = (self.page_idx - 1) * PAGE_SIZE
        for order, lines in self._orders[start : start + PAGE_SIZE]:
            table.add_row(
                (order.created_at or "")[:10],
                order.status.capitalize(),
                str(len(lines)),
                format_price(order.total_amount),
                key=order.id,
            )

        self.query_one("#label-page", Label).update(f"{self.page_idx} / {self.page_cnt}")
        self.query_one("#btn-prev", Button).disabled = self.page_idx <= 1
        self.query_one("#btn-next", Button).disabled = self.page_idx >= self.page_cnt

        if table.row_count:
            table.move_cursor(row=0)
            self._render_detail(table.coordinate_to_cell_key((0, 0)).row_key.value)
        else:
            self._render_detail(None)

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        self._render_detail(event.row_key.value)

    @work(exclusive=True, group="detail")
    async def _render_detail(self, order_id: str | None) -> None:
        viewer = self.query_one("#md-order-detail", MarkdownViewer)
        if self.app.state.session.session is None:
            await viewer.document.update("### Log in to see your orders.")
            return
        if not self._orders:
            await viewer.document.update("### You have not placed any orders yet.")
            return

        found = [(o, lines) for o, lines in self._orders if o.id == order_id]
        if not found:
            await viewer.document.update("### Select an order to view its details.")
            return
        order, lines = found[0]

        rows = []
        for ln in lines:
            prod = self._products.get(ln.product_id)
            rows.append(
                [
                    prod.name if prod else ln.product_id,
                    prod.category if prod else "-",
                    str(ln.quantity),
                    format_price(ln.price),
                ]
            )
        md = (
            f"### Order {order.id[:8]}\n"
            f"Date: {order.created_at or '-'}  \n"
            f"Status: {order.status.capitalize()}  \n"
            f"Payment: {PAYMENT_LABELS.get(order.payment_method, order.payment_method)}  \n"
            f"Ship To: {order.shipping_address}\n\n"
            + generate_markdown_table(
                ["Product", "Category", "Qty", "Price"], rows, ["l", "l", "r", "r"]
            )
            + f"\n\n**Total:** {format_price(order.total_amount)}"
        )
        if order.status in COMPLETED_ORDER_STATUSES:
            md += "\n\nOpen a product from the catalog to review it."
        await viewer.document.update(md)
