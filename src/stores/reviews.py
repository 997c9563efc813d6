from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

import db.crud as crud
from db.models import Review, ReviewDraft
from db.platform import BlobStorage, DataClient
from stores.session import SessionManager
from utils.errors import PermissionDeniedError, RemoteError, ValidationError
from utils.logger import get_logger
from utils.pure import RatingSummary, summarize_ratings
from utils.subscription import Listeners, Subscription

_logger = get_logger(__name__)

REVIEW_IMAGE_BUCKET = "review-images"


async def can_review(client: DataClient, user_id: str, product_id: str) -> bool:
    """
    True iff the user bought the product and has not reviewed it yet.
    Both reads run concurrently, the answer is only given once both resolved.
    """
    purchased, reviewed = await asyncio.gather(
        crud.has_purchased(client, user_id, product_id),
        crud.has_reviewed(client, user_id, product_id),
    )
    return purchased and not reviewed


def validate_draft(draft: ReviewDraft) -> None:
    if isinstance(draft.rating, bool) or not isinstance(draft.rating, int):
        raise ValidationError("Rating must be a whole number between 1 and 5.")
    if not 1 <= draft.rating <= 5:
        raise ValidationError("Rating must be between 1 and 5.")
    if not (draft.comment or "").strip():
        raise ValidationError("Please write a comment.")


class ReviewGate:
    """
    Review state of one product-detail view.

    `eligible` is derived from the two reads of the latest refresh and stays
    False until both have resolved, so a partial result is never published.
    Refreshes are tagged with a generation; one that is superseded (newer
    refresh, identity change, successful submission, close) is dropped.
    """

    def __init__(
        self,
        client: DataClient,
        sessions: SessionManager,
        storage: BlobStorage,
        product_id: str,
    ) -> None:
        self._client = client
        self._sessions = sessions
        self._storage = storage
        self.product_id = product_id

        self._generation = 0
        self._user_id: Optional[str] = None
        self._purchased: Optional[bool] = None
        self._reviewed: Optional[bool] = None
        self._submitting = False
        self._reviews: List[Review] = []

        self._alive = True
        self._session_subscription: Optional[Subscription] = None
        self._pending: Optional[asyncio.Task] = None
        self._listeners: Listeners[ReviewGate] = Listeners()

    # ---------------------------
    # Reads
    # ---------------------------

    @property
    def eligible(self) -> bool:
        return (
            self._alive
            and not self._submitting
            and self._purchased is True
            and self._reviewed is False
        )

    @property
    def resolved(self) -> bool:
        return self._purchased is not None and self._reviewed is not None

    @property
    def reviews(self) -> Tuple[Review, ...]:
        return tuple(self._reviews)

    @property
    def summary(self) -> RatingSummary:
        return summarize_ratings(r.rating for r in self._reviews)

    def subscribe(self, listener) -> Subscription:
        return self._listeners.add(listener)

    # ---------------------------
    # Lifecycle
    # ---------------------------

    def open(self) -> None:
        """Follow the session: recompute eligibility whenever the identity changes."""
        if self._session_subscription is None:
            self._session_subscription = self._sessions.subscribe(self._on_session)

    def close(self) -> None:
        if not self._alive:
            return
        self._alive = False
        self._generation += 1
        if self._session_subscription is not None:
            self._session_subscription.unsubscribe()
            self._session_subscription = None
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._listeners.clear()

    def _on_session(self, sessions: SessionManager) -> None:
        session = sessions.session
        user_id = session.id if session else None
        if user_id == self._user_id:
            return
        if self._pending is not None:
            self._pending.cancel()
        self._pending = asyncio.ensure_future(self.refresh())

    def _publish(self) -> None:
        self._listeners.notify(self)

    # ---------------------------
    # Eligibility
    # ---------------------------

    async def refresh(self) -> bool:
        """Recompute eligibility for the current identity and this product."""
        if not self._alive:
            return False
        self._generation += 1
        generation = self._generation
        self._purchased = None
        self._reviewed = None

        session = self._sessions.session
        self._user_id = session.id if session else None
        if session is None:
            self._publish()
            return False
        user_id = session.id

        async def read_purchased():
            value = await crud.has_purchased(self._client, user_id, self.product_id)
            if generation == self._generation:
                self._purchased = value

        async def read_reviewed():
            value = await crud.has_reviewed(self._client, user_id, self.product_id)
            if generation == self._generation:
                self._reviewed = value

        try:
            await asyncio.gather(read_purchased(), read_reviewed())
        except RemoteError as exc:
            _logger.warning(f"Could not check review eligibility: {exc.message}")
            if generation == self._generation:
                # keep the form disabled
                self._generation += 1
                self._purchased = None
                self._reviewed = None
                self._publish()
            return False

        if generation != self._generation:
            return self.eligible
        self._publish()
        return self.eligible

    # ---------------------------
    # Reviews
    # ---------------------------

    async def load_reviews(self) -> List[Review]:
        self._reviews = await crud.list_reviews(self._client, self.product_id)
        self._publish()
        return list(self._reviews)

    async def submit_review(self, draft: ReviewDraft) -> Review:
        """
        Validate, upload the optional image, insert the review.

        On success eligibility drops to False at once, without waiting for a
        refetch, then the review list is reloaded. Errors propagate unchanged
        and leave eligibility as it was.
        """
        validate_draft(draft)
        if draft.product_id != self.product_id:
            raise ValidationError("Review does not belong to this product.")
        session = self._sessions.session
        if session is None or session.id != draft.user_id:
            raise PermissionDeniedError("Please sign in to write a review.")
        if self._submitting:
            raise PermissionDeniedError("Your review is already being submitted.")
        if not self.eligible:
            raise PermissionDeniedError(
                "Only buyers who have not reviewed this product yet can write a review."
            )

        self._submitting = True
        self._publish()
        submitted = False
        try:
            image_url = None
            if draft.image is not None:
                path = draft.image.storage_path(draft.user_id)
                await self._storage.upload(REVIEW_IMAGE_BUCKET, path, draft.image.data)
                image_url = self._storage.public_url(REVIEW_IMAGE_BUCKET, path)
            review = await crud.insert_review(self._client, draft, image_url)
            submitted = True
        finally:
            self._submitting = False
            if not submitted:
                self._publish()

        # drop any in-flight refresh, this user has now reviewed the product
        self._generation += 1
        self._reviewed = True
        self._publish()
        _logger.info(f"Review {review.id} submitted for product {self.product_id}.")

        try:
            await self.load_reviews()
        except RemoteError as exc:
            _logger.warning(f"Could not reload reviews: {exc.message}")
        return review
