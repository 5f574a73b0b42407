"""RecFlow - Recommendation verification and similarity ranking."""

__version__ = "0.1.0"

from .enrichment import EnrichmentQueue
from .models import QueueJob, RecommendationCandidate, SimilarityResult, VerifiedContentItem
from .scoring import SimilarityScorer
from .verifier import MetadataVerifier
