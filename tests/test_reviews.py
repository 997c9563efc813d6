import asyncio
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

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
)
from db.models import CartItem, ImageFile, ReviewDraft, Session  # noqa: E402
from stores.reviews import (  # noqa: E402
    REVIEW_IMAGE_BUCKET,
    ReviewGate,
    can_review,
    validate_draft,
)
from utils.errors import (  # noqa: E402
    PermissionDeniedError,
    RemoteError,
    TransportError,
    ValidationError,
)
from utils.subscription import Listeners  # noqa: E402

SEEDED_BUYER = "u-buyer-01"
SOLD_PRODUCT = "p-006"  # bought and reviewed by the seeded buyer
CAMERA = "p-001"


class FakeSessions:
    """stands in for the session manager: a settable session plus listeners"""

    def __init__(self, session=None):
        self._session = session
        self._listeners = Listeners()

    @property
    def session(self):
        return self._session

    def subscribe(self, listener):
        return self._listeners.add(listener)

    def set_session(self, session):
        self._session = session
        self._listeners.notify(self)


def session_for(user_id, email="buyer@kurasi.test"):
    return Session(id=user_id, email=email, role="member")


class ReviewTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        db_database.configure(os.path.join(self.temp_dir.name, "test.sqlite"))
        self.data = SqliteDataClient()
        self.storage = LocalBlobStorage(os.path.join(self.temp_dir.name, "storage"))
        self.identity = SqliteIdentityProvider(
            FileKeyValueStore(os.path.join(self.temp_dir.name, "kv.json"))
        )

    def tearDown(self):
        self.temp_dir.cleanup()

    async def new_buyer_of(self, product_id):
        """register a user and give them a paid order containing product_id"""
        identity = await self.identity.sign_up("rina@kurasi.test", "secret123")
        prod = await crud.get_product(self.data, product_id)
        await crud.place_order(
            self.data,
            identity.id,
            [CartItem(id=prod.id, name=prod.name, price=prod.price)],
            "Jl. Sudirman 1, Jakarta",
        )
        return identity.id

    def gate_for(self, sessions, product_id):
        gate = ReviewGate(self.data, sessions, self.storage, product_id)
        self.addCleanup(gate.close)
        return gate

    def draft(self, user_id, product_id=CAMERA, **kwargs):
        fields = {"rating": 5, "comment": "Works like a charm."}
        fields.update(kwargs)
        return ReviewDraft(product_id=product_id, user_id=user_id, **fields)

    # ---------- can_review ----------

    async def test_can_review_requires_purchase_and_no_review(self):
        # seeded buyer already reviewed what they bought
        self.assertFalse(await can_review(self.data, SEEDED_BUYER, SOLD_PRODUCT))
        # never bought the camera
        self.assertFalse(await can_review(self.data, SEEDED_BUYER, CAMERA))

        buyer = await self.new_buyer_of(CAMERA)
        self.assertTrue(await can_review(self.data, buyer, CAMERA))

    async def test_pending_order_does_not_count_as_purchase(self):
        buyer = await self.new_buyer_of(CAMERA)
        await self.data.update("orders", {"user_id": buyer}, {"status": "pending"})
        self.assertFalse(await crud.has_purchased(self.data, buyer, CAMERA))

    # ---------- Gate ----------

    async def test_anonymous_is_never_eligible(self):
        gate = self.gate_for(FakeSessions(None), CAMERA)
        self.assertFalse(await gate.refresh())
        self.assertFalse(gate.eligible)

    async def test_refresh_publishes_eligibility(self):
        buyer = await self.new_buyer_of(CAMERA)
        gate = self.gate_for(FakeSessions(session_for(buyer)), CAMERA)
        published = []
        gate.subscribe(lambda g: published.append(g.eligible))

        self.assertFalse(gate.eligible)
        self.assertTrue(await gate.refresh())
        self.assertTrue(gate.eligible)
        self.assertEqual(published, [True])

    async def test_partial_reads_are_never_eligible(self):
        release = asyncio.Event()

        async def slow_purchase(*_args):
            await release.wait()
            return True

        async def not_reviewed(*_args):
            return False

        gate = self.gate_for(FakeSessions(session_for("u-x")), CAMERA)
        with (
            mock.patch.object(crud, "has_purchased", slow_purchase),
            mock.patch.object(crud, "has_reviewed", not_reviewed),
        ):
            task = asyncio.ensure_future(gate.refresh())
            for _ in range(5):
                await asyncio.sleep(0)
            # has_reviewed resolved, has_purchased did not
            self.assertFalse(gate.resolved)
            self.assertFalse(gate.eligible)

            release.set()
            self.assertTrue(await task)
        self.assertTrue(gate.eligible)

    async def test_superseded_refresh_is_dropped(self):
        first_call = asyncio.Event()
        release = asyncio.Event()
        answers = iter([True, False])

        async def purchase(*_args):
            answer = next(answers)
            if answer:
                first_call.set()
                await release.wait()
            return answer

        async def not_reviewed(*_args):
            return False

        gate = self.gate_for(FakeSessions(session_for("u-x")), CAMERA)
        with (
            mock.patch.object(crud, "has_purchased", purchase),
            mock.patch.object(crud, "has_reviewed", not_reviewed),
        ):
            stale = asyncio.ensure_future(gate.refresh())
            await first_call.wait()
            self.assertFalse(await gate.refresh())

            release.set()
            await stale
        # the stale "purchased" answer never lands
        self.assertFalse(gate.eligible)

    async def test_identity_change_recomputes(self):
        buyer = await self.new_buyer_of(CAMERA)
        sessions = FakeSessions(None)
        gate = self.gate_for(sessions, CAMERA)
        gate.open()

        sessions.set_session(session_for(buyer))
        for _ in range(50):
            if gate.eligible:
                break
            await asyncio.sleep(0.01)
        self.assertTrue(gate.eligible)

        sessions.set_session(None)
        for _ in range(50):
            if not gate.eligible:
                break
            await asyncio.sleep(0.01)
        self.assertFalse(gate.eligible)

    async def test_read_failure_keeps_form_disabled(self):
        async def offline(*_args):
            raise TransportError("offline")

        gate = self.gate_for(FakeSessions(session_for("u-x")), CAMERA)
        with mock.patch.object(crud, "has_purchased", offline):
            self.assertFalse(await gate.refresh())
        self.assertFalse(gate.eligible)
        self.assertFalse(gate.resolved)

    # ---------- Submission ----------

    async def test_submit_flips_eligibility_at_once(self):
        buyer = await self.new_buyer_of(CAMERA)
        gate = self.gate_for(FakeSessions(session_for(buyer)), CAMERA)
        await gate.refresh()

        seen = []
        gate.subscribe(lambda g: seen.append((g.eligible, len(g.reviews))))
        review = await gate.submit_review(self.draft(buyer, rating=4))

        self.assertFalse(gate.eligible)
        self.assertEqual(review.rating, 4)
        # eligibility dropped before the review list was reloaded
        self.assertIn((False, 0), seen)
        self.assertEqual([r.id for r in gate.reviews], [review.id])
        self.assertTrue(await crud.has_reviewed(self.data, buyer, CAMERA))
        self.assertFalse(await gate.refresh())

    async def test_submit_with_image_uploads_first(self):
        buyer = await self.new_buyer_of(CAMERA)
        gate = self.gate_for(FakeSessions(session_for(buyer)), CAMERA)
        await gate.refresh()

        image = ImageFile(filename="Unboxing.PNG", data=b"\x89PNG fake")
        review = await gate.submit_review(self.draft(buyer, image=image))

        uploaded = list(
            (Path(self.temp_dir.name) / "storage" / REVIEW_IMAGE_BUCKET / buyer).iterdir()
        )
        self.assertEqual(len(uploaded), 1)
        self.assertEqual(uploaded[0].suffix, ".png")
        self.assertEqual(uploaded[0].read_bytes(), b"\x89PNG fake")
        self.assertEqual(review.image_url, uploaded[0].resolve().as_uri())

    async def test_failed_submit_keeps_eligibility(self):
        buyer = await self.new_buyer_of(CAMERA)
        gate = self.gate_for(FakeSessions(session_for(buyer)), CAMERA)
        await gate.refresh()

        async def rejected(*_args, **_kwargs):
            raise RemoteError("insert rejected")

        with mock.patch.object(crud, "insert_review", rejected):
            with self.assertRaises(RemoteError):
                await gate.submit_review(self.draft(buyer))
        self.assertTrue(gate.eligible)
        self.assertFalse(await crud.has_reviewed(self.data, buyer, CAMERA))

    async def test_submit_without_eligibility_is_denied(self):
        # seeded buyer already reviewed p-006
        gate = self.gate_for(FakeSessions(session_for(SEEDED_BUYER)), SOLD_PRODUCT)
        await gate.refresh()
        with self.assertRaises(PermissionDeniedError):
            await gate.submit_review(self.draft(SEEDED_BUYER, product_id=SOLD_PRODUCT))

    async def test_submit_for_another_user_is_denied(self):
        buyer = await self.new_buyer_of(CAMERA)
        gate = self.gate_for(FakeSessions(session_for(buyer)), CAMERA)
        await gate.refresh()
        with self.assertRaises(PermissionDeniedError):
            await gate.submit_review(self.draft("someone-else"))

    async def test_invalid_drafts_are_rejected_before_any_write(self):
        buyer = await self.new_buyer_of(CAMERA)
        gate = self.gate_for(FakeSessions(session_for(buyer)), CAMERA)
        await gate.refresh()

        for kwargs in [
            {"rating": 0},
            {"rating": 6},
            {"rating": "5"},
            {"rating": True},
            {"comment": "   "},
        ]:
            with self.subTest(**kwargs):
                with self.assertRaises(ValidationError):
                    await gate.submit_review(self.draft(buyer, **kwargs))
        self.assertTrue(gate.eligible)
        self.assertFalse(await crud.has_reviewed(self.data, buyer, CAMERA))

    def test_validate_draft_accepts_bounds(self):
        for rating in (1, 5):
            validate_draft(ReviewDraft(CAMERA, "u", rating, "ok"))

    # ---------- Listing ----------

    async def test_load_reviews_and_summary(self):
        gate = self.gate_for(FakeSessions(None), SOLD_PRODUCT)
        reviews = await gate.load_reviews()
        self.assertEqual([r.id for r in reviews], ["r-001"])
        self.assertEqual(str(gate.summary), "5.0 (1 review)")

    async def test_closed_gate_is_inert(self):
        buyer = await self.new_buyer_of(CAMERA)
        gate = self.gate_for(FakeSessions(session_for(buyer)), CAMERA)
        await gate.refresh()
        gate.close()
        self.assertFalse(gate.eligible)
        self.assertFalse(await gate.refresh())


if __name__ == "__main__":
    unittest.main()
