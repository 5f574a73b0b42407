"""Cross-verification of raw candidates against the metadata provider.

The verifier:
1. Resolves a candidate by external id, falling back to a title search
2. Picks the closest title among several search hits
3. Normalizes provider field aliases into one canonical record
4. Merges candidate-only fields into the verified item
"""

import asyncio
import functools
import logging
import re
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .models import (
    AmbiguousMatch,
    MalformedCandidate,
    MediaType,
    NotFound,
    RecommendationCandidate,
    VerifiedContentItem,
    coerce_year,
)
from .providers.base import MetadataProvider, RawRecord
from .utils.text import title_distance

logger = logging.getLogger(__name__)

# Canonical field -> provider aliases, highest precedence first.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "external_id": ("imdbID", "imdb_id", "id"),
    "title": ("Title", "title", "name", "original_title"),
    "year": ("Year", "year", "release_date", "first_air_date", "Released"),
    "plot": ("Plot", "plot", "overview", "synopsis", "description"),
    "content_rating": ("Rated", "rated", "contentRating", "content_rating", "certification"),
    "genres": ("Genre", "genres", "genre_strings", "genre"),
    "runtime": ("Runtime", "runtime"),
    "poster_url": ("Poster", "poster", "poster_path", "posterUrl"),
    "vote_average": ("imdbRating", "vote_average", "rating"),
    "vote_count": ("imdbVotes", "vote_count"),
    "media_type": ("Type", "media_type", "type"),
    "keywords": ("keywords", "Keywords"),
}

_EMPTY_MARKERS = {"", "n/a", "none", "null"}
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in _EMPTY_MARKERS
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def resolve_aliases(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a raw provider record onto canonical field names.

    Each canonical field takes the first non-empty alias in FIELD_ALIASES order;
    fields with no non-empty alias are absent from the result.
    """
    resolved = {}
    for canonical, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            value = raw.get(alias)
            if not _is_empty(value):
                resolved[canonical] = value
                break
    return resolved


def _coerce_names(value: Any) -> FrozenSet[str]:
    """Genres/keywords arrive as "A, B", ["A", "B"] or [{"name": "A"}, ...]."""
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, Mapping):
        # TMDb-style {"keywords": [{"name": ...}]}
        items = next((v for v in value.values() if isinstance(v, list)), [])
    else:
        items = value or []

    names = set()
    for item in items:
        name = item.get("name") if isinstance(item, Mapping) else item
        if not _is_empty(name):
            names.add(str(name).strip())
    return frozenset(names)


def _coerce_number(value: Any, cast: Callable[[str], Any]) -> Optional[Any]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return cast(str(value))
    match = _NUMBER_RE.search(str(value).replace(",", ""))
    return cast(match.group(0)) if match else None


def _coerce_int(value: Any) -> Optional[int]:
    number = _coerce_number(value, float)
    return int(number) if number is not None else None


def _coerce_str(value: Any) -> Optional[str]:
    return None if _is_empty(value) else str(value).strip()


class MetadataVerifier:
    """Resolves candidates to authoritative ``VerifiedContentItem`` records."""

    def __init__(self, provider: MetadataProvider, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.provider = provider
        self.ambiguity_threshold = config.get("ambiguity_threshold", 0.4)

    async def _call(self, func: Callable, *args) -> Any:
        """Run a blocking provider call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def verify(self, candidate: RecommendationCandidate) -> VerifiedContentItem:
        """Verify one candidate. Raises a ``VerificationError`` subclass on failure."""
        if not candidate.title or not candidate.title.strip():
            raise MalformedCandidate(f"candidate {candidate.id or '<no id>'} has no title")

        raw = None
        low_confidence = False

        lookup_id = candidate.lookup_id
        if lookup_id:
            logger.debug(f"Looking up {candidate.title!r} by id {lookup_id}")
            raw = await self._call(self.provider.lookup_by_id, lookup_id)
            if raw is not None:
                provider_title = resolve_aliases(raw).get("title", "")
                distance = title_distance(candidate.title, str(provider_title))
                if distance >= self.ambiguity_threshold:
                    logger.info(
                        f"Id {lookup_id} resolved to {provider_title!r}, "
                        f"far from {candidate.title!r} (distance {distance:.2f})"
                    )
                    low_confidence = True
            else:
                logger.info(f"No record for id {lookup_id}, falling back to title search")

        if raw is None:
            raw = await self._search(candidate)

        return self._build_item(candidate, raw, low_confidence)

    async def _search(self, candidate: RecommendationCandidate) -> RawRecord:
        matches = await self._call(self.provider.lookup_by_title, candidate.title, candidate.year)
        if not matches and candidate.year:
            logger.debug(f"No results for {candidate.title!r} ({candidate.year}), retrying without year")
            matches = await self._call(self.provider.lookup_by_title, candidate.title, None)
        if not matches:
            raise NotFound(f"no provider record for {candidate.title!r}")

        best = self.select_match(candidate, matches)

        # Search hits are partial; fetch the full record when possible
        hit_id = _coerce_str(resolve_aliases(best).get("external_id"))
        if hit_id:
            full = await self._call(self.provider.lookup_by_id, hit_id)
            if full is not None:
                return full
        return best

    def select_match(self, candidate: RecommendationCandidate, matches: List[RawRecord]) -> RawRecord:
        """Closest normalized title wins; ties go to the closest year, then provider order."""
        scored = []
        for index, match in enumerate(matches):
            if not isinstance(match, Mapping):
                continue
            fields = resolve_aliases(match)
            distance = title_distance(candidate.title, str(fields.get("title", "")))
            match_year = coerce_year(fields.get("year"))
            if candidate.year and match_year:
                year_gap = abs(candidate.year - match_year)
            else:
                year_gap = float("inf")
            scored.append((distance, year_gap, index, match))

        if not scored:
            raise NotFound(f"provider returned no usable records for {candidate.title!r}")

        distance, _, _, best = min(scored, key=lambda s: s[:3])
        if distance >= self.ambiguity_threshold:
            if len(scored) > 1:
                raise AmbiguousMatch(
                    f"{len(scored)} matches for {candidate.title!r}, closest distance {distance:.2f}"
                )
            raise NotFound(f"only match for {candidate.title!r} is too different ({distance:.2f})")
        return best

    def _build_item(
        self, candidate: RecommendationCandidate, raw: Any, low_confidence: bool
    ) -> VerifiedContentItem:
        """Coerce the raw record into the closed item shape and merge candidate fields."""
        if not isinstance(raw, Mapping):
            raise NotFound(f"provider record for {candidate.title!r} is not a mapping")
        fields = resolve_aliases(raw)
        title = _coerce_str(fields.get("title"))
        if not title:
            raise NotFound(f"provider record for {candidate.title!r} has no title")

        vote_average = _coerce_number(fields.get("vote_average"), float)
        return VerifiedContentItem(
            id=_coerce_str(fields.get("external_id")) or candidate.identity,
            title=title,
            year=coerce_year(fields.get("year")) or candidate.year,
            synopsis=_coerce_str(fields.get("plot")) or candidate.synopsis,
            reason=candidate.reason,
            ai_recommended=candidate.ai_recommended,
            content_rating=_coerce_str(fields.get("content_rating"))
            or _coerce_str(candidate.content_rating),
            genres=_coerce_names(fields.get("genres")),
            runtime=_coerce_int(fields.get("runtime")),
            poster_url=_coerce_str(fields.get("poster_url")),
            vote_average=vote_average or 0.0,
            vote_count=_coerce_int(fields.get("vote_count")) or 0,
            media_type=MediaType.coerce(fields.get("media_type") or candidate.media_type),
            candidate_id=candidate.id or None,
            keywords=_coerce_names(fields.get("keywords")),
            low_confidence=low_confidence,
        )
