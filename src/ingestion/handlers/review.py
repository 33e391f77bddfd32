"""
Product review event handler.

Handles: ProductReview
"""

from datetime import datetime

from ingestion.handlers.base import EventHandler, register_handler
from ingestion.schemas.entities import ProductReview
from ingestion.schemas.events import EventType, ProductReviewPayload


@register_handler
class ProductReviewHandler(EventHandler):
    event_type = EventType.PRODUCT_REVIEW

    def build_record(self, payload: ProductReviewPayload, processed_at: datetime) -> ProductReview:
        return ProductReview(
            review_id=payload.review_id,
            product_name=payload.product_name,
            username=payload.username,
            rating=payload.rating,
            remarks=payload.remarks or "",
            created_at=payload.created_at,
            updated_at=processed_at,
        )

    async def persist(self, record: ProductReview) -> None:
        await self.store.upsert_product_review(record)
