import logging
from collections import Counter
from typing import List, Optional

from goswish.models import Cleaner, CleanerReviews, Review, ReviewStats, TagCount
from goswish.services.document_store import Collection, DocumentStore, document_store
from goswish.services.repository import Repository

logger = logging.getLogger(__name__)

TOP_TAGS = 5


class ReviewStore:
    """Reviews written by both parties, and the cleaner rating they drive.

    ``homeowner`` reviews rate the cleaner; ``cleaner`` reviews rate the
    customer. Only homeowner reviews count toward ``Cleaner.rating``.
    """

    def __init__(self, store: DocumentStore):
        self.reviews = Repository(store, Collection.REVIEWS, Review)
        self.cleaners = Repository(store, Collection.CLEANERS, Cleaner)

    def add(self, review: Review) -> Review:
        record = self.reviews.add(review)
        if record.reviewer_role == "homeowner":
            self.refresh_cleaner_rating(record.cleaner_id)
        return record

    def list_for_booking(self, booking_id: str) -> List[Review]:
        return self.reviews.query("booking_id", booking_id)

    def list_for_cleaner(self, cleaner_id: str) -> List[Review]:
        rows = [r for r in self.reviews.query("cleaner_id", cleaner_id) if r.reviewer_role == "homeowner"]
        rows.sort(key=lambda r: r.created_at or "", reverse=True)
        return rows

    def list_for_customer(self, customer_id: str) -> List[Review]:
        rows = [r for r in self.reviews.query("customer_id", customer_id) if r.reviewer_role == "cleaner"]
        rows.sort(key=lambda r: r.created_at or "", reverse=True)
        return rows

    def stats(self, reviews: List[Review]) -> ReviewStats:
        if not reviews:
            return ReviewStats()
        distribution = ReviewStats().distribution
        tags: Counter[str] = Counter()
        for review in reviews:
            distribution[str(review.rating)] += 1
            tags.update(review.tags)
        return ReviewStats(
            avg_rating=round(sum(r.rating for r in reviews) / len(reviews), 1),
            total_reviews=len(reviews),
            distribution=distribution,
            top_tags=[TagCount(tag=tag, count=count) for tag, count in tags.most_common(TOP_TAGS)],
        )

    def cleaner_reviews_with_stats(self, cleaner_id: str) -> CleanerReviews:
        rows = self.list_for_cleaner(cleaner_id)
        return CleanerReviews(cleaner_id=cleaner_id, reviews=rows, stats=self.stats(rows))

    def refresh_cleaner_rating(self, cleaner_id: str) -> Optional[Cleaner]:
        if self.cleaners.get(cleaner_id) is None:
            logger.warning("Rating refresh skipped: cleaner %s not found", cleaner_id)
            return None
        stats = self.stats(self.list_for_cleaner(cleaner_id))
        return self.cleaners.update(cleaner_id, rating=stats.avg_rating, review_count=stats.total_reviews)


review_store = ReviewStore(document_store)
