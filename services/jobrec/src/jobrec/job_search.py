from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
from common.utils import normalize_whitespace

from jobrec.geo import UuleConverter
from jobrec.models import JobListing

LOGGER = logging.getLogger("jobrec.job_search")

REQUIRED_FIELDS = ("job_id", "title", "company_name", "location", "via", "description")


class LocationConverter(Protocol):
    def convert(self, latitude: float, longitude: float) -> str: ...


class KeywordExtractor(Protocol):
    def extract(self, text: str, max_keywords: int) -> set[str]: ...


@dataclass
class SearchOutcome:
    listings: list[JobListing] = field(default_factory=list)
    provider_failed: bool = False


def parse_listing(item: dict[str, Any]) -> JobListing:
    missing = [name for name in REQUIRED_FIELDS if item.get(name) is None]
    if missing:
        raise ValueError(f"missing fields: {', '.join(missing)}")

    highlights: list[str] = []
    for group in item.get("job_highlights") or []:
        if not isinstance(group, dict):
            continue
        highlights.extend(str(entry) for entry in group.get("items") or [])

    url = ""
    for link in item.get("related_links") or []:
        if isinstance(link, dict) and link.get("link"):
            url = str(link["link"])
            break

    return JobListing(
        id=str(item["job_id"]),
        title=normalize_whitespace(str(item["title"])),
        company_name=normalize_whitespace(str(item["company_name"])),
        location=normalize_whitespace(str(item["location"])),
        via=normalize_whitespace(str(item["via"])),
        description=str(item["description"]),
        job_highlights=highlights,
        url=url,
        keywords={str(extension) for extension in item.get("extensions") or []},
    )


class JobSearchClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        keyword_extractor: KeywordExtractor,
        default_keyword: str = "engineer",
        results_limit: int = 20,
        keywords_per_listing: int = 3,
        location_converter: LocationConverter | None = None,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = api_key or ""
        self.base_url = base_url
        self.keyword_extractor = keyword_extractor
        self.default_keyword = default_keyword
        self.results_limit = results_limit
        self.keywords_per_listing = keywords_per_listing
        self.location_converter = location_converter or UuleConverter()
        self.timeout = timeout
        self._transport = transport
        self.logger = logger or LOGGER

    def search(self, latitude: float, longitude: float, keyword: str | None = None) -> list[JobListing]:
        return self.search_with_outcome(latitude, longitude, keyword).listings

    def search_with_outcome(
        self,
        latitude: float,
        longitude: float,
        keyword: str | None = None,
    ) -> SearchOutcome:
        query = keyword if keyword and keyword.strip() else self.default_keyword
        params = {
            "engine": "google_jobs",
            "q": query,
            "uule": self.location_converter.convert(latitude, longitude),
            "api_key": self.api_key,
        }

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(self.base_url, params=params)
        except httpx.HTTPError as exc:
            self._log_provider_failure(query, error=str(exc))
            return SearchOutcome(provider_failed=True)

        if response.status_code != 200 or not response.content:
            self._log_provider_failure(query, status_code=response.status_code)
            return SearchOutcome(provider_failed=True)

        try:
            payload = response.json()
        except ValueError:
            self._log_provider_failure(query, error="invalid json")
            return SearchOutcome(provider_failed=True)

        results = payload.get("jobs_results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            # The provider omits jobs_results entirely when nothing matched.
            results = []

        listings: list[JobListing] = []
        for item in results:
            if len(listings) >= self.results_limit:
                break
            if not isinstance(item, dict):
                continue
            try:
                listings.append(parse_listing(item))
            except ValueError as exc:
                self.logger.info(
                    json.dumps({"event": "job_result_skipped", "query": query, "error": str(exc)})
                )

        for listing in listings:
            extracted = self.keyword_extractor.extract(
                listing.keyword_source_text(),
                self.keywords_per_listing,
            )
            listing.keywords = listing.keywords | extracted

        self.logger.info(
            json.dumps({"event": "job_search_complete", "query": query, "results": len(listings)})
        )
        return SearchOutcome(listings=listings)

    def _log_provider_failure(self, query: str, **details: Any) -> None:
        self.logger.warning(json.dumps({"event": "job_search_failed", "query": query, **details}))
