"""
Review synchronisation service.
Fetches reviews from TripAdvisor, Google Business Profile and Facebook Pages
and upserts them by platform review id.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config.settings import settings
from app.db.models import Review, ReviewSource, SyncLogStatus
from app.db.crud.review_crud import (
    create_sync_log, update_sync_log, update_review_source, get_review_by_platform_id,
    create_review, update_review, get_connected_review_sources
)

logger = logging.getLogger(__name__)

GOOGLE_STAR_RATINGS = {
    "STAR_RATING_UNSPECIFIED": 0,
    "ONE": 1,
    "TWO": 2,
    "THREE": 3,
    "FOUR": 4,
    "FIVE": 5,
}

TRIPADVISOR_URL_PATTERNS = [
    re.compile(r"[Rr]estaurant_[Rr]eview-g\d+-d(\d+)"),
    re.compile(r"[Hh]otel_[Rr]eview-g\d+-d(\d+)"),
    re.compile(r"[Aa]ttraction_[Rr]eview-g\d+-d(\d+)"),
    re.compile(r"[Ss]how[Uu]ser[Rr]eviews-g\d+-d(\d+)"),
]

# Fields a sync may overwrite on an existing review; local state (read, flagged) is kept
SYNCED_FIELDS = (
    "review_url", "rating", "content", "reviewer_name", "reviewer_avatar_url", "review_date",
    "response_text", "response_date", "response_status", "sentiment",
)


def parse_platform_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a platform API into naive UTC."""
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    # Graph API offsets come without a colon (+0000)
    text = re.sub(r"([+-]\d{2})(\d{2})$", r"\1:\2", text)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def sentiment_from_rating(rating: int) -> str:
    """Coarse sentiment label from a star rating."""
    return {
        5: "very_positive",
        4: "positive",
        3: "neutral",
        2: "negative",
    }.get(rating, "very_negative")


def extract_tripadvisor_location_id(url: str) -> Optional[str]:
    """Location id from a TripAdvisor page URL."""
    for pattern in TRIPADVISOR_URL_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    return None


class ReviewPlatformClient:
    """Base HTTP client for a review platform."""

    platform = ""

    def __init__(self):
        self.session: Optional[aiohttp.ClientSession] = None

    async def initialize(self):
        """Initialize the HTTP session."""
        if not self.session:
            timeout = aiohttp.ClientTimeout(total=30)
            self.session = aiohttp.ClientSession(timeout=timeout)

    async def cleanup(self):
        """Clean up the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    async def _get_json(self, url: str, params: Optional[Dict[str, str]] = None, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        if not self.session:
            await self.initialize()

        async with self.session.get(url, params=params, headers=headers) as response:
            if response.status >= 400:
                body = await response.text()
                raise aiohttp.ClientResponseError(
                    request_info=response.request_info,
                    history=response.history,
                    status=response.status,
                    message=f"HTTP {response.status}: {body[:200]}"
                )
            return await response.json()

    async def fetch_reviews(self, source: ReviewSource) -> List[Dict[str, Any]]:
        """Fetch and normalise every review of a source."""
        raise NotImplementedError


class TripAdvisorClient(ReviewPlatformClient):
    """TripAdvisor Content API client."""

    platform = "tripadvisor"
    base_url = "https://api.content.tripadvisor.com/api/v1"

    async def fetch_reviews(self, source: ReviewSource) -> List[Dict[str, Any]]:
        if not settings.tripadvisor_api_key:
            raise ValueError("TripAdvisor API key not configured")
        if not source.platform_location_id:
            raise ValueError("No TripAdvisor location ID")

        data = await self._get_json(
            f"{self.base_url}/location/{source.platform_location_id}/reviews",
            params={"key": settings.tripadvisor_api_key, "language": "fr"},
            headers={"accept": "application/json"},
        )
        return [self.normalize(review) for review in data.get("data", [])]

    async def get_location_details(self, location_id: str) -> Dict[str, Any]:
        """Name, address, rating and review count of a listing."""
        if not settings.tripadvisor_api_key:
            raise ValueError("TripAdvisor API key not configured")

        return await self._get_json(
            f"{self.base_url}/location/{location_id}/details",
            params={"key": settings.tripadvisor_api_key, "language": "fr"},
            headers={"accept": "application/json"},
        )

    @staticmethod
    def normalize(review: Dict[str, Any]) -> Dict[str, Any]:
        title, text = review.get("title"), review.get("text") or ""
        owner_response = review.get("owner_response")
        user = review.get("user") or {}
        return {
            "platform_review_id": str(review["id"]),
            "review_url": review.get("url"),
            "rating": int(review.get("rating") or 0),
            "content": f"{title}\n\n{text}" if title else text,
            "reviewer_name": user.get("username") or "Anonyme",
            "reviewer_avatar_url": (user.get("avatar") or {}).get("medium"),
            "review_date": parse_platform_date(review.get("published_date")),
            "response_text": owner_response.get("text") if owner_response else None,
            "response_date": parse_platform_date(owner_response.get("published_date")) if owner_response else None,
            "response_status": "published" if owner_response else "none",
        }


class GoogleBusinessClient(ReviewPlatformClient):
    """Google Business Profile reviews client."""

    platform = "google"
    reviews_url = "https://mybusiness.googleapis.com/v4"

    async def fetch_reviews(self, source: ReviewSource) -> List[Dict[str, Any]]:
        if not source.access_token:
            raise ValueError("No access token")
        metadata = source.source_metadata or {}
        account_name, location_name = metadata.get("accountName"), metadata.get("locationName")
        if not account_name or not location_name:
            raise ValueError("Missing account/location metadata")

        headers = {"Authorization": f"Bearer {source.access_token}"}
        reviews: List[Dict[str, Any]] = []
        page_token: Optional[str] = None
        while True:
            params = {"pageToken": page_token} if page_token else None
            data = await self._get_json(
                f"{self.reviews_url}/{account_name}/{location_name}/reviews",
                params=params,
                headers=headers,
            )
            reviews.extend(self.normalize(review) for review in data.get("reviews", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return reviews

    @staticmethod
    def normalize(review: Dict[str, Any]) -> Dict[str, Any]:
        reply = review.get("reviewReply")
        reviewer = review.get("reviewer") or {}
        return {
            "platform_review_id": review["reviewId"],
            "review_url": None,
            "rating": GOOGLE_STAR_RATINGS.get(review.get("starRating"), 0),
            "content": review.get("comment"),
            "reviewer_name": reviewer.get("displayName") or "Anonyme",
            "reviewer_avatar_url": reviewer.get("profilePhotoUrl"),
            "review_date": parse_platform_date(review.get("createTime")),
            "response_text": reply.get("comment") if reply else None,
            "response_date": parse_platform_date(reply.get("updateTime")) if reply else None,
            "response_status": "published" if reply else "none",
        }


class FacebookPagesClient(ReviewPlatformClient):
    """Facebook Graph API page ratings client."""

    platform = "facebook"
    base_url = "https://graph.facebook.com/v18.0"

    async def fetch_reviews(self, source: ReviewSource) -> List[Dict[str, Any]]:
        if not source.access_token:
            raise ValueError("No access token")
        if not source.platform_location_id:
            raise ValueError("No Facebook page ID")

        reviews: List[Dict[str, Any]] = []
        after: Optional[str] = None
        while True:
            params = {
                "access_token": source.access_token,
                "fields": "created_time,has_rating,has_review,rating,recommendation_type,review_text,reviewer{id,name},open_graph_story",
                "limit": "100",
            }
            if after:
                params["after"] = after
            data = await self._get_json(f"{self.base_url}/{source.platform_location_id}/ratings", params=params)
            reviews.extend(self.normalize(rating) for rating in data.get("data", []))

            paging = data.get("paging") or {}
            after = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not after:
                break
        return reviews

    @staticmethod
    def normalize(rating: Dict[str, Any]) -> Dict[str, Any]:
        stars = 5
        if rating.get("rating"):
            stars = int(rating["rating"])
        elif rating.get("recommendation_type") == "negative":
            stars = 1

        reviewer = rating.get("reviewer") or {}
        story_id = (rating.get("open_graph_story") or {}).get("id")
        return {
            "platform_review_id": story_id or f"{reviewer.get('id')}_{rating.get('created_time')}",
            "review_url": None,
            "rating": stars,
            "content": rating.get("review_text"),
            "reviewer_name": reviewer.get("name") or "Anonyme",
            "reviewer_avatar_url": None,
            "review_date": parse_platform_date(rating.get("created_time")),
            "response_text": None,
            "response_date": None,
            "response_status": "none",
        }


class ReviewSyncService:
    """Service for synchronising platform reviews."""

    def __init__(self):
        self.clients: Dict[str, ReviewPlatformClient] = {
            "tripadvisor": TripAdvisorClient(),
            "google": GoogleBusinessClient(),
            "facebook": FacebookPagesClient(),
        }

    async def cleanup(self):
        """Close every platform HTTP session."""
        for client in self.clients.values():
            await client.cleanup()

    def _upsert_reviews(self, db: Session, source: ReviewSource, reviews: List[Dict[str, Any]]) -> Dict[str, int]:
        new_count, updated_count = 0, 0
        for data in reviews:
            if not data.get("platform_review_id") or not data.get("rating"):
                continue
            data = {**data, "sentiment": sentiment_from_rating(data["rating"])}
            if data.get("review_date") is None:
                data["review_date"] = datetime.utcnow()

            existing = get_review_by_platform_id(db, source.user_id, source.platform, data["platform_review_id"])
            if existing:
                update_review(db, source.user_id, existing.id, {key: data[key] for key in SYNCED_FIELDS})
                updated_count += 1
            else:
                create_review(db, source.user_id, {**data, "platform": source.platform, "source_id": source.id})
                new_count += 1
        return {"new": new_count, "updated": updated_count}

    def _refresh_source_totals(self, db: Session, source: ReviewSource) -> Dict[str, Any]:
        count, average = db.query(func.count(Review.id), func.avg(Review.rating)).filter(
            Review.source_id == source.id
        ).one()
        return {
            "total_reviews_count": int(count or 0),
            "average_rating": round(float(average) * 10) if average is not None else None,
        }

    async def sync_review_source(self, db: Session, source: ReviewSource) -> Dict[str, Any]:
        """
        Synchronise one source.

        A running sync log is opened first and closed as success or error;
        errors are recorded, not raised.

        Returns:
            {"success": bool, "fetched": int, "new": int, "updated": int, "error": str|None}
        """
        sync_log = create_sync_log(db, source.id)
        logger.info(f"🔄 Syncing {source.platform} source {source.id}")

        try:
            client = self.clients.get(source.platform)
            if client is None:
                raise ValueError(f"Unknown platform: {source.platform}")

            reviews = await client.fetch_reviews(source)
            counts = self._upsert_reviews(db, source, reviews)

            update_sync_log(db, sync_log.id, {
                "status": SyncLogStatus.SUCCESS,
                "completed_at": datetime.utcnow(),
                "reviews_fetched": len(reviews),
                "reviews_new": counts["new"],
                "reviews_updated": counts["updated"],
            })
            update_review_source(db, source.id, {
                "last_sync_at": datetime.utcnow(),
                "last_sync_status": "success",
                "last_sync_error": None,
                **self._refresh_source_totals(db, source),
            })
            logger.info(
                f"✅ Synced {source.platform} source {source.id}: "
                f"{len(reviews)} fetched, {counts['new']} new, {counts['updated']} updated"
            )
            return {"success": True, "fetched": len(reviews), "new": counts["new"], "updated": counts["updated"], "error": None}

        except Exception as e:
            db.rollback()
            logger.error(f"❌ Sync failed for {source.platform} source {source.id}: {e}")
            update_sync_log(db, sync_log.id, {
                "status": SyncLogStatus.ERROR,
                "completed_at": datetime.utcnow(),
                "error_message": str(e),
            })
            update_review_source(db, source.id, {
                "last_sync_at": datetime.utcnow(),
                "last_sync_status": "error",
                "last_sync_error": str(e),
            })
            return {"success": False, "fetched": 0, "new": 0, "updated": 0, "error": str(e)}

    async def sync_all_review_sources(self, db: Session, user_id=None) -> Dict[str, Any]:
        """
        Synchronise connected sources one after another.

        Args:
            db: Database session
            user_id: Restrict to one tenant; all tenants when None

        Returns:
            {"total": int, "succeeded": int, "failed": int}
        """
        sources = get_connected_review_sources(db, user_id)
        succeeded, failed = 0, 0

        for index, source in enumerate(sources):
            if index > 0:
                await asyncio.sleep(settings.review_sync_delay_seconds)
            try:
                result = await self.sync_review_source(db, source)
                if result["success"]:
                    succeeded += 1
                else:
                    failed += 1
            except Exception as e:
                logger.error(f"❌ Unexpected error syncing source {source.id}: {e}")
                failed += 1

        logger.info(f"Review sync finished: {succeeded} succeeded, {failed} failed of {len(sources)}")
        return {"total": len(sources), "succeeded": succeeded, "failed": failed}


# Global review sync service instance
review_sync_service = ReviewSyncService()
