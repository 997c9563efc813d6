from typing import Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal
from textual.events import ScreenResume
from textual.widgets import DataTable, Input, Label, Select

import db.crud
from utils.errors import KurasiError
from utils.pure import format_price
from views.base_screen import BaseScreen
from views.modal_prod_detail import ProdDetailModal


class CatalogScreen(BaseScreen):
    """
    product search with a category filter, open a row to see its detail
    """

    # only here to be displayed in footer
    BINDINGS = [
        Binding("enter", "noop", "View Product", show=True, key_display="⏎"),
    ]

    def __init__(self):
        super().__init__()

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Horizontal(id="hort-search"):
            yield Input(id="input-search", placeholder="Search products...")
            yield Select([], prompt="All categories", id="select-category")
        yield DataTable(id="table-search-result")
        yield Label("", id="label-result-cnt")

    def on_mount(self):
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Name", "Category", "Price", "Status")

        self.load_categories()
        self.refresh_results()
        self.query_one("#input-search").focus()

    def action_noop(self) -> None:
        pass

    def _category(self) -> Optional[str]:
        value = self.query_one("#select-category", Select).value
        # the blank "All categories" entry is not a string
        return value if isinstance(value, str) else None

    def refresh_results(self) -> None:
        self.update_search_result(
            self.query_one("#input-search", Input).value, self._category()
        )

    @on(Input.Changed, "#input-search")
    @on(Select.Changed, "#select-category")
    def handle_filter_changed(self) -> None:
        self.refresh_results()

    @on(ScreenResume)
    def handle_resume(self) -> None:
        self.refresh_results()

    @work(exclusive=True, group="categories")
    async def load_categories(self) -> None:
        try:
            categories = await db.crud.list_categories(self.app.state.platform.data)
        except KurasiError as exc:
            self.app.state.toasts.report(exc)
            return
        self.query_one("#select-category", Select).set_options(
            (name, name) for name in categories
        )

    @work(exclusive=True)
    async def update_search_result(self, query: str, category: Optional[str] = None) -> None:
        try:
            products = await db.crud.list_products(
                self.app.state.platform.data, query, category
            )
        except KurasiError as exc:
            self.app.state.toasts.report(exc)
            products = []

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
        self.query_one("#label-result-cnt", Label).update(
            f"{len(products)} product(s)"
        )

    @on(DataTable.RowSelected)
    def handle_row_selected(self, event: DataTable.RowSelected) -> None:
        self.open_detail(event.row_key.value)

    @work()
    async def open_detail(self, product_id: str) -> None:
        await self.app.push_screen_wait(ProdDetailModal(product_id))
