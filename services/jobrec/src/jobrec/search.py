from __future__ import annotations

import json
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Protocol

from jobrec.cache import ResultCache
from jobrec.errors import StorageError, ValidationFailed
from jobrec.job_search import SearchOutcome
from jobrec.models import JobListing, dump_listings, load_listings
from jobrec.repository import JobRecRepository
from jobrec.validation import (
    ValidationResult,
    parse_coordinate,
    validate_and_sanitize_keyword,
    validate_and_sanitize_user_id,
    validate_search_parameters,
)

LOGGER = logging.getLogger("jobrec.search")


class JobSearchProvider(Protocol):
    def search_with_outcome(
        self,
        latitude: float,
        longitude: float,
        keyword: str | None = None,
    ) -> SearchOutcome: ...


@dataclass(frozen=True)
class SearchQuery:
    user_id: str
    latitude: float
    longitude: float
    keyword: str | None = None


def parse_search_query(
    user_id: str | None,
    lat: str | None,
    lon: str | None,
    keyword: str | None = None,
) -> SearchQuery:
    result = ValidationResult()
    if user_id is None or not user_id.strip():
        result.add_error("User ID is required.")
    latitude = parse_coordinate(lat, "Latitude", result)
    longitude = parse_coordinate(lon, "Longitude", result)
    validate_search_parameters(latitude, longitude, keyword, result)
    if result.has_errors:
        raise ValidationFailed(result.errors)

    sanitized_user_id = validate_and_sanitize_user_id(user_id)
    if not sanitized_user_id:
        raise ValidationFailed("Invalid user ID format")
    sanitized_keyword = validate_and_sanitize_keyword(keyword) or None
    return SearchQuery(sanitized_user_id, latitude, longitude, sanitized_keyword)


class SearchService:
    def __init__(
        self,
        job_search: JobSearchProvider,
        *,
        recommendation_keyword_limit: int = 3,
        logger: logging.Logger | None = None,
    ) -> None:
        self.job_search = job_search
        self.recommendation_keyword_limit = recommendation_keyword_limit
        self.logger = logger or LOGGER

    def fetch_listings(
        self,
        cache: ResultCache,
        latitude: float,
        longitude: float,
        keyword: str | None,
    ) -> list[JobListing]:
        cached = cache.get(latitude, longitude, keyword)
        if cached is not None:
            try:
                return load_listings(cached)
            except ValueError as exc:
                self.logger.warning(
                    json.dumps({"event": "cache_entry_unreadable", "error": str(exc)})
                )

        outcome = self.job_search.search_with_outcome(latitude, longitude, keyword)
        if outcome.provider_failed:
            self.logger.warning(
                json.dumps({"event": "search_provider_unavailable", "keyword": keyword})
            )
        elif not outcome.listings:
            self.logger.info(json.dumps({"event": "search_no_results", "keyword": keyword}))
        else:
            cache.set(latitude, longitude, keyword, dump_listings(outcome.listings))
        return outcome.listings

    def search(
        self,
        repository: JobRecRepository,
        cache: ResultCache,
        query: SearchQuery,
    ) -> list[JobListing]:
        started = time.perf_counter()
        favorite_ids = repository.get_favorite_ids(query.user_id)
        listings = self.fetch_listings(cache, query.latitude, query.longitude, query.keyword)
        for listing in listings:
            listing.favorite = listing.id in favorite_ids

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        try:
            repository.record_search(
                user_id=query.user_id,
                keyword=query.keyword,
                latitude=query.latitude,
                longitude=query.longitude,
                results_count=len(listings),
                response_time_ms=elapsed_ms,
            )
        except StorageError as exc:
            self.logger.warning(json.dumps({"event": "search_history_failed", "error": str(exc)}))
        return listings

    def favorites(
        self,
        repository: JobRecRepository,
        cache: ResultCache,
        user_id: str,
    ) -> list[JobListing]:
        cached = cache.get_favorites(user_id)
        if cached is not None:
            try:
                return load_listings(cached)
            except ValueError as exc:
                self.logger.warning(
                    json.dumps({"event": "cache_entry_unreadable", "error": str(exc)})
                )
        listings = repository.get_favorite_listings(user_id)
        cache.set_favorites(user_id, dump_listings(listings))
        return listings

    def update_favorites(
        self,
        repository: JobRecRepository,
        cache: ResultCache,
        user_id: str,
        changes: list[JobListing],
    ) -> None:
        try:
            for listing in changes:
                if listing.favorite:
                    repository.set_favorite(user_id, listing)
                else:
                    repository.unset_favorite(user_id, listing.id)
        finally:
            cache.delete_favorites(user_id)

    def recommend(
        self,
        repository: JobRecRepository,
        cache: ResultCache,
        query: SearchQuery,
    ) -> list[JobListing]:
        favorites = repository.get_favorite_listings(query.user_id)
        if not favorites:
            return []

        counts: Counter[str] = Counter()
        for listing in favorites:
            counts.update(sorted(listing.keywords))
        top_keywords = [
            keyword for keyword, _ in counts.most_common(self.recommendation_keyword_limit)
        ]

        favorite_ids = {listing.id for listing in favorites}
        seen: set[str] = set()
        recommended: list[JobListing] = []
        for keyword in top_keywords:
            for listing in self.fetch_listings(cache, query.latitude, query.longitude, keyword):
                if listing.id in favorite_ids or listing.id in seen:
                    continue
                seen.add(listing.id)
                listing.favorite = False
                recommended.append(listing)

        self.logger.info(
            json.dumps(
                {
                    "event": "recommendation_complete",
                    "user_id": query.user_id,
                    "keywords": top_keywords,
                    "results": len(recommended),
                }
            )
        )
        return recommended
