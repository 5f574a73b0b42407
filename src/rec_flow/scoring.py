"""Similarity scoring of verified items against a reference item."""

import logging
import math
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set

from .models import ConfigError, SimilarityResult, VerifiedContentItem
from .utils.text import extract_keywords, title_similarity, tokenize

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {"plot": 0.3, "keyword": 0.4, "title": 0.3}


def overlap(a: Set[str], b: Set[str]) -> float:
    """Shared-token count over the smaller set size. 0 when either side is empty."""
    if not a or not b:
        return 0.0
    return len(a & b) / max(1, min(len(a), len(b)))


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class SimilarityScorer:
    """Ranks candidates by a weighted blend of plot, keyword and title similarity.

    Scoring is pure: no I/O and no clock, so identical inputs give identical output.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        weights = {**DEFAULT_WEIGHTS, **(config.get("weights") or {})}
        self.weights = self._validate_weights(weights)
        self.derive_keywords = bool(config.get("derive_keywords", False))

    @staticmethod
    def _validate_weights(weights: Dict[str, Any]) -> Dict[str, float]:
        unknown = set(weights) - set(DEFAULT_WEIGHTS)
        if unknown:
            raise ConfigError(f"Unknown scoring weights: {', '.join(sorted(unknown))}")
        try:
            parsed = {name: float(value) for name, value in weights.items()}
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Scoring weights must be numbers: {e}") from e
        if any(value < 0 for value in parsed.values()):
            raise ConfigError(f"Scoring weights must be non-negative: {parsed}")
        if not math.isclose(sum(parsed.values()), 1.0, abs_tol=1e-6):
            raise ConfigError(f"Scoring weights must sum to 1, got {sum(parsed.values()):.4f}")
        return parsed

    def keywords_for(self, item: VerifiedContentItem) -> FrozenSet[str]:
        if item.keywords:
            return frozenset(k.lower() for k in item.keywords)
        if self.derive_keywords:
            return frozenset(extract_keywords(item.synopsis))
        return frozenset()

    def score_one(
        self,
        reference: VerifiedContentItem,
        candidate: VerifiedContentItem,
        use_keywords: bool,
        reference_tokens: Optional[Set[str]] = None,
        reference_keywords: Optional[FrozenSet[str]] = None,
    ) -> SimilarityResult:
        if reference_tokens is None:
            reference_tokens = tokenize(reference.synopsis)
        if reference_keywords is None:
            reference_keywords = self.keywords_for(reference)

        plot = overlap(reference_tokens, tokenize(candidate.synopsis))
        title = title_similarity(reference.title, candidate.title)

        candidate_keywords = self.keywords_for(candidate)
        keywords_used = bool(use_keywords and reference_keywords and candidate_keywords)

        w = self.weights
        if keywords_used:
            keyword = overlap(set(reference_keywords), set(candidate_keywords))
            combined = w["plot"] * plot + w["keyword"] * keyword + w["title"] * title
        else:
            # Keyword weight moves to plot so the range stays [0, 1]
            keyword = 0.0
            combined = (w["plot"] + w["keyword"]) * plot + w["title"] * title

        return SimilarityResult(
            content_id=candidate.id,
            plot_similarity=_clamp(plot),
            keyword_similarity=_clamp(keyword),
            title_similarity=_clamp(title),
            combined_similarity=_clamp(combined),
            keywords_used=keywords_used,
        )

    def score(
        self,
        reference: VerifiedContentItem,
        candidates: Iterable[VerifiedContentItem],
        use_keywords: bool = False,
    ) -> List[SimilarityResult]:
        """One result per distinct candidate id, best first, reference excluded."""
        reference_tokens = tokenize(reference.synopsis)
        reference_keywords = self.keywords_for(reference)

        best: Dict[str, SimilarityResult] = {}
        for candidate in candidates:
            if candidate.id == reference.id:
                continue
            result = self.score_one(
                reference, candidate, use_keywords, reference_tokens, reference_keywords
            )
            current = best.get(result.content_id)
            if current is None or result.combined_similarity > current.combined_similarity:
                best[result.content_id] = result

        # dict keeps first-seen order, and sorted() is stable
        ranked = sorted(best.values(), key=lambda r: r.combined_similarity, reverse=True)
        logger.debug(f"Scored {len(ranked)} candidates against {reference.id}")
        return ranked
