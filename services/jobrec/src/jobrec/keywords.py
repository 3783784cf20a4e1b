from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

import httpx

LOGGER = logging.getLogger("jobrec.keywords")


def select_top_keywords(pairs: Iterable[tuple[str, float]], max_keywords: int) -> set[str]:
    """Pick up to ``max_keywords`` keywords, highest importance group first.

    Keywords sharing an importance score form one group and are consumed in
    encounter order, so a group may be cut short once the cap is reached.
    """
    if max_keywords <= 0:
        return set()

    groups: dict[float, list[str]] = {}
    for keyword, importance in pairs:
        groups.setdefault(importance, []).append(keyword)

    selected: set[str] = set()
    for importance in sorted(groups, reverse=True):
        for keyword in groups[importance]:
            if len(selected) >= max_keywords:
                return selected
            selected.add(keyword)
    return selected


class KeywordExtractionClient:
    def __init__(
        self,
        *,
        api_key: str | None,
        url: str,
        provider: str = "ibm",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = api_key or ""
        self.url = url
        self.provider = provider
        self.timeout = timeout
        self._transport = transport
        self.logger = logger or LOGGER

    def extract(self, text: str, max_keywords: int) -> set[str]:
        if not text.strip() or max_keywords <= 0:
            return set()

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    self.url,
                    json={"providers": self.provider, "language": "en", "text": text},
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "accept": "application/json",
                    },
                )
        except httpx.HTTPError as exc:
            self.logger.warning(
                json.dumps({"event": "keyword_extraction_failed", "error": str(exc)})
            )
            return set()

        if response.status_code != 200:
            self.logger.warning(
                json.dumps(
                    {"event": "keyword_extraction_failed", "status_code": response.status_code}
                )
            )
            return set()

        try:
            payload = response.json()
        except ValueError:
            self.logger.warning(
                json.dumps({"event": "keyword_extraction_failed", "error": "invalid json"})
            )
            return set()

        pairs = self._parse_pairs(payload)
        if pairs is None:
            self.logger.warning(
                json.dumps(
                    {
                        "event": "keyword_extraction_failed",
                        "error": f"no {self.provider} items in response",
                    }
                )
            )
            return set()
        return select_top_keywords(pairs, max_keywords)

    def _parse_pairs(self, payload: Any) -> list[tuple[str, float]] | None:
        if not isinstance(payload, dict):
            return None
        provider_result = payload.get(self.provider)
        if not isinstance(provider_result, dict):
            return None
        items = provider_result.get("items")
        if not isinstance(items, list):
            return None

        pairs: list[tuple[str, float]] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            keyword = str(item.get("keyword", "")).strip()
            try:
                importance = float(item.get("importance", 0.0))
            except (TypeError, ValueError):
                continue
            if keyword:
                pairs.append((keyword, importance))
        return pairs
