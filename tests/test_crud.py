import asyncio
import os
import sys
import tempfile
import unittest
from pathlib import Path

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from db import crud  # noqa: E402
from db import database as db_database  # noqa: E402
from db.kv_store import FileKeyValueStore  # noqa: E402
from db.local_platform import (  # noqa: E402
    LocalBlobStorage,
    SqliteDataClient,
    SqliteIdentityProvider,
    hash_password,
    verify_password,
)
from db.models import CartItem, ImageFile  # noqa: E402
from db.platform import AuthEvent  # noqa: E402
from utils.errors import (  # noqa: E402
    AuthError,
    NotFoundError,
    RemoteError,
    ValidationError,
)


class CrudTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        # Point the DB to a temporary file and force re-initialization
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database.configure(self.db_path)
        self.data = SqliteDataClient()
        self.kv = FileKeyValueStore(os.path.join(self.temp_dir.name, "kv.json"))
        self.identity = SqliteIdentityProvider(self.kv)

    async def asyncSetUp(self):
        # Touch initialization by opening a connection
        async with db_database.connect() as conn:
            cur = await conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table';"
            )
            await cur.fetchall()
            await cur.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    async def register(self, email="dewi@kurasi.test", password="rahasia1"):
        return await self.identity.sign_up(email, password)

    # ---------- Auth ----------

    async def test_sign_up_sign_in_sign_out(self):
        events = []
        self.identity.subscribe(lambda ev, ident: events.append((ev, ident)))

        identity = await self.register(email="  Dewi@Kurasi.test ")
        self.assertEqual(identity.email, "dewi@kurasi.test")
        self.assertFalse(identity.email_verified)
        # sign up does not start a session
        self.assertIsNone(await self.identity.get_current_session())

        signed_in = await self.identity.sign_in("dewi@kurasi.test", "rahasia1")
        self.assertEqual(signed_in.id, identity.id)
        self.assertEqual((await self.identity.get_current_session()).id, identity.id)

        await self.identity.sign_out()
        self.assertIsNone(await self.identity.get_current_session())

        # events are delivered on a later loop iteration
        await asyncio.sleep(0)
        self.assertEqual(
            [ev for ev, _ in events], [AuthEvent.SIGNED_IN, AuthEvent.SIGNED_OUT]
        )
        self.assertEqual(events[0][1].id, identity.id)
        self.assertIsNone(events[1][1])

    async def test_sign_up_creates_member_profile(self):
        identity = await self.register()
        profile = await crud.get_profile(self.data, identity.id)
        self.assertEqual(profile.role, "member")
        self.assertIsNone(profile.full_name)

    async def test_sign_up_rejects_bad_input(self):
        await self.register()
        cases = [
            ("no-at-sign", "rahasia1", "Unable to validate email address: invalid format"),
            ("x@kurasi.test", "123", "Password should be at least 6 characters."),
            ("dewi@kurasi.test", "rahasia1", "User already registered"),
        ]
        for email, password, message in cases:
            with self.subTest(email=email):
                with self.assertRaises(AuthError) as ctx:
                    await self.identity.sign_up(email, password)
                self.assertEqual(ctx.exception.message, message)

    async def test_sign_in_with_wrong_credentials(self):
        await self.register()
        for email, password in [
            ("dewi@kurasi.test", "wrong-pw"),
            ("nobody@kurasi.test", "rahasia1"),
            # seeded accounts have no usable password
            ("budi@kurasi.test", "!"),
        ]:
            with self.subTest(email=email):
                with self.assertRaises(AuthError) as ctx:
                    await self.identity.sign_in(email, password)
                self.assertEqual(ctx.exception.message, "Invalid login credentials")
        self.assertIsNone(await self.identity.get_current_session())

    async def test_session_survives_restart_and_stale_token_is_dropped(self):
        identity = await self.register()
        await self.identity.sign_in("dewi@kurasi.test", "rahasia1")

        reopened = SqliteIdentityProvider(
            FileKeyValueStore(os.path.join(self.temp_dir.name, "kv.json"))
        )
        self.assertEqual((await reopened.get_current_session()).id, identity.id)

        self.kv.set("kurasi_auth_token", "ghost-user")
        self.assertIsNone(await self.identity.get_current_session())
        self.assertIsNone(self.kv.get("kurasi_auth_token"))

    async def test_unsubscribed_listener_gets_no_events(self):
        events = []
        sub = self.identity.subscribe(lambda ev, ident: events.append(ev))
        await self.register()
        await self.identity.sign_in("dewi@kurasi.test", "rahasia1")
        sub.unsubscribe()
        await asyncio.sleep(0)
        self.assertEqual(events, [])

    def test_password_hash_roundtrip(self):
        encoded = hash_password("rahasia1")
        self.assertTrue(encoded.startswith("pbkdf2_sha256$"))
        self.assertTrue(verify_password("rahasia1", encoded))
        self.assertFalse(verify_password("rahasia2", encoded))
        self.assertFalse(verify_password("rahasia1", "!"))

    # ---------- Data client ----------

    async def test_select_filters_and_ordering(self):
        rows = await self.data.select(
            "products", {"category": ["Fashion", "Music"]}, order_by="price"
        )
        self.assertEqual([r["id"] for r in rows], ["p-005", "p-002", "p-006"])

        self.assertEqual(await self.data.select("products", {"id": []}), [])
        self.assertEqual(
            len(await self.data.select("products", order_by="created_at", limit=2)), 2
        )

    async def test_unknown_table_or_column_is_remote_error(self):
        with self.assertRaises(RemoteError):
            await self.data.select("users")
        with self.assertRaises(RemoteError):
            await self.data.select("products", {"password_hash": "x"})
        with self.assertRaises(RemoteError):
            await self.data.update("products", {"id": "p-001"}, {"nope": 1})

    async def test_constraint_violation_is_remote_error(self):
        with self.assertRaises(RemoteError):
            await self.data.insert(
                "reviews",
                [
                    {
                        "product_id": "p-006",
                        "user_id": "u-buyer-01",
                        "rating": 4,
                        "comment": "second review",
                    }
                ],
            )

    # ---------- Profiles ----------

    async def test_update_profile(self):
        identity = await self.register()
        profile = await crud.update_profile(
            self.data, identity.id, full_name=" Dewi Lestari ", phone="", address="Jl. Asia Afrika 8"
        )
        self.assertEqual(profile.full_name, "Dewi Lestari")
        self.assertIsNone(profile.phone)
        self.assertEqual(profile.address, "Jl. Asia Afrika 8")

        with self.assertRaises(NotFoundError):
            await crud.update_profile(self.data, "ghost", full_name="x")

    async def test_get_seller_only_returns_sellers(self):
        self.assertEqual((await crud.get_seller(self.data, "u-seller-01")).full_name, "Sari Wulandari")
        self.assertIsNone(await crud.get_seller(self.data, "u-buyer-01"))

    async def test_request_seller(self):
        identity = await self.register()
        req = await crud.request_seller(self.data, identity.id, "Toko Dewi", "Vintage bags")
        self.assertEqual(req.status, "pending")
        self.assertEqual(req.user_id, identity.id)

        with self.assertRaises(ValidationError):
            await crud.request_seller(self.data, identity.id, "  ", "Vintage bags")
        with self.assertRaises(ValidationError):
            await crud.request_seller(self.data, identity.id, "Toko Dewi", "")

    # ---------- Products ----------

    async def test_list_products_newest_first_and_search(self):
        products = await crud.list_products(self.data)
        self.assertEqual(products[0].id, "p-006")
        self.assertEqual(len(products), 6)

        self.assertEqual(
            [p.id for p in await crud.list_products(self.data, "ELECTRONICS")],
            ["p-004", "p-001"],
        )
        self.assertEqual(
            [p.id for p in await crud.list_products(self.data, "teak table")], ["p-003"]
        )
        self.assertEqual(await crud.list_products(self.data, "spaceship"), [])

    async def test_get_product(self):
        prod = await crud.get_product(self.data, "p-006")
        self.assertTrue(prod.is_sold)
        self.assertEqual(prod.price, 1200000)

        with self.assertRaises(NotFoundError) as ctx:
            await crud.get_product(self.data, "p-404")
        self.assertEqual(ctx.exception.message, "Product not found!")

    async def test_get_products_skips_missing(self):
        got = await crud.get_products(self.data, ["p-001", "p-404"])
        self.assertEqual(list(got), ["p-001"])
        self.assertEqual(await crud.get_products(self.data, []), {})

    async def test_category_filter(self):
        self.assertEqual(
            await crud.list_categories(self.data),
            ["Electronics", "Fashion", "Furniture", "Music"],
        )
        self.assertEqual(
            [p.id for p in await crud.list_products(self.data, category="Fashion")],
            ["p-005", "p-002"],
        )
        self.assertEqual(
            [p.id for p in await crud.list_products(self.data, "scarf", "Fashion")],
            ["p-005"],
        )
        self.assertEqual(await crud.list_products(self.data, "scarf", "Electronics"), [])
        self.assertEqual(await crud.list_products(self.data, category="Vehicles"), [])
        # no category means every category
        self.assertEqual(len(await crud.list_products(self.data, category=None)), 6)

    async def test_list_seller_products_newest_first(self):
        products = await crud.list_seller_products(self.data, "u-seller-01")
        self.assertEqual(
            [p.id for p in products], ["p-006", "p-005", "p-004", "p-003", "p-002", "p-001"]
        )
        # sold listings stay on the storefront
        self.assertTrue(products[0].is_sold)
        self.assertEqual(await crud.list_seller_products(self.data, "u-buyer-01"), [])

    # ---------- Avatars ----------

    async def test_upload_avatar_points_profile_at_public_url(self):
        identity = await self.register()
        storage = LocalBlobStorage(os.path.join(self.temp_dir.name, "storage"))
        image = ImageFile(filename="Me.JPG", data=b"\xff\xd8 fake jpeg")

        profile = await crud.upload_avatar(self.data, storage, identity.id, image)

        prefix = storage.public_url(crud.AVATAR_BUCKET, identity.id) + "/"
        self.assertTrue(profile.avatar_url.startswith(prefix))
        self.assertTrue(profile.avatar_url.endswith(".jpg"))
        self.assertEqual((await crud.get_profile(self.data, identity.id)).avatar_url, profile.avatar_url)

        stored = list(Path(self.temp_dir.name, "storage", crud.AVATAR_BUCKET, identity.id).iterdir())
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0].read_bytes(), b"\xff\xd8 fake jpeg")

    async def test_upload_empty_avatar_is_rejected(self):
        identity = await self.register()
        storage = LocalBlobStorage(os.path.join(self.temp_dir.name, "storage"))
        with self.assertRaises(ValidationError):
            await crud.upload_avatar(self.data, storage, identity.id, ImageFile("me.png", b""))
        self.assertIsNone((await crud.get_profile(self.data, identity.id)).avatar_url)

    # ---------- Reviews ----------

    async def test_seeded_purchase_and_review(self):
        self.assertTrue(await crud.has_purchased(self.data, "u-buyer-01", "p-006"))
        self.assertTrue(await crud.has_reviewed(self.data, "u-buyer-01", "p-006"))
        self.assertFalse(await crud.has_purchased(self.data, "u-buyer-01", "p-001"))

        self.assertEqual(await crud.product_ratings(self.data, "p-006"), [5])
        self.assertEqual(await crud.seller_ratings(self.data, "u-seller-01"), [5])
        self.assertEqual(await crud.seller_ratings(self.data, "u-buyer-01"), [])

    # ---------- Orders ----------

    async def test_place_order_and_history(self):
        identity = await self.register()
        items = [
            CartItem(id="p-001", name="Vintage Film Camera", price=1500000),
            CartItem(id="p-005", name="Batik Tulis Scarf", price=250000),
        ]
        order = await crud.place_order(
            self.data, identity.id, items, "  Jl. Asia Afrika 8 ", "cod"
        )
        self.assertEqual(order.status, "paid")
        self.assertEqual(order.total_amount, 1750000)
        self.assertEqual(order.shipping_address, "Jl. Asia Afrika 8")
        self.assertEqual(order.payment_method, "cod")

        history = await crud.list_orders(self.data, identity.id)
        self.assertEqual(len(history), 1)
        got_order, lines = history[0]
        self.assertEqual(got_order.id, order.id)
        self.assertEqual([ln.product_id for ln in lines], ["p-001", "p-005"])
        self.assertTrue(all(ln.quantity == 1 for ln in lines))

        self.assertTrue(await crud.has_purchased(self.data, identity.id, "p-005"))

    async def test_place_order_validation(self):
        identity = await self.register()
        item = CartItem(id="p-001", name="Vintage Film Camera", price=1500000)
        cases = [
            ([], "Jl. X", "manual_transfer", "Your cart is empty"),
            ([item], "   ", "manual_transfer", "Please provide a shipping address"),
            ([item], "Jl. X", "crypto", "Unsupported payment method: crypto"),
        ]
        for items, address, method, message in cases:
            with self.subTest(message=message):
                with self.assertRaises(ValidationError) as ctx:
                    await crud.place_order(self.data, identity.id, items, address, method)
                self.assertEqual(ctx.exception.message, message)
        self.assertEqual(await crud.list_orders(self.data, identity.id), [])

    async def test_failed_order_line_leaves_no_order_behind(self):
        identity = await self.register()
        items = [
            CartItem(id="p-001", name="Vintage Film Camera", price=1500000),
            CartItem(id="p-404", name="Withdrawn listing", price=1000),
        ]
        with self.assertRaises(RemoteError):
            await crud.place_order(self.data, identity.id, items, "Jl. X")

        self.assertEqual(await crud.list_orders(self.data, identity.id), [])
        self.assertEqual(await self.data.select("orders", {"user_id": identity.id}), [])
        self.assertEqual(
            await self.data.select("order_items", {"product_id": "p-001"}), []
        )

    async def test_insert_batch_is_all_or_nothing(self):
        identity = await self.register()
        with self.assertRaises(RemoteError):
            await self.data.insert_batch(
                [
                    (
                        "seller_requests",
                        [{"user_id": identity.id, "shop_name": "Toko", "description": "d"}],
                    ),
                    ("reviews", [{"product_id": "p-404", "user_id": identity.id, "rating": 5, "comment": "x"}]),
                ]
            )
        self.assertEqual(await self.data.select("seller_requests", {"user_id": identity.id}), [])

        requests, reviews = await self.data.insert_batch(
            [
                ("seller_requests", [{"user_id": identity.id, "shop_name": "Toko", "description": "d"}]),
                ("reviews", []),
            ]
        )
        self.assertEqual([r["shop_name"] for r in requests], ["Toko"])
        self.assertEqual(reviews, [])

    async def test_list_orders_newest_first(self):
        history = await crud.list_orders(self.data, "u-buyer-01")
        self.assertEqual([o.id for o, _ in history], ["o-001"])

        identity = await self.register()
        item = CartItem(id="p-002", name="Denim Trucker Jacket", price=350000)
        first = await crud.place_order(self.data, identity.id, [item], "Jl. X")
        second = await crud.place_order(self.data, identity.id, [item], "Jl. Y")
        history = await crud.list_orders(self.data, identity.id)
        self.assertEqual([o.id for o, _ in history], [second.id, first.id])

    # ---------- Storage ----------

    async def test_blob_storage(self):
        storage = LocalBlobStorage(os.path.join(self.temp_dir.name, "storage"))
        await storage.upload("review-images", "u-1/1.png", b"img")
        url = storage.public_url("review-images", "u-1/1.png")
        self.assertTrue(url.startswith("file://"))
        self.assertTrue(url.endswith("/review-images/u-1/1.png"))

        with self.assertRaises(RemoteError) as ctx:
            await storage.upload("review-images", "u-1/1.png", b"again")
        self.assertEqual(ctx.exception.message, "The resource already exists")

        with self.assertRaises(ValidationError):
            await storage.upload("review-images", "../../escape.png", b"x")


if __name__ == "__main__":
    unittest.main()
