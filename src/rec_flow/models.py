"""Data models for RecFlow."""

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


_YEAR_RE = re.compile(r"(\d{4})")
_IMDB_URL_RE = re.compile(r"/title/(tt\d+)", re.IGNORECASE)


def coerce_year(value: Any) -> Optional[int]:
    """Pull a 4-digit year out of ints, "1999", "1999-2003" or "2010-05-01"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    match = _YEAR_RE.search(str(value))
    return int(match.group(1)) if match else None


def normalize_title(title: Optional[str]) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    if not title:
        return ""
    cleaned = re.sub(r"[^\w\s]", " ", str(title).lower())
    return " ".join(cleaned.split())


# =========================================
# Errors
# =========================================


class RecFlowError(Exception):
    """Base class for RecFlow errors."""


class VerificationError(RecFlowError):
    """A candidate could not be verified against the metadata provider."""

    permanent = True


class NotFound(VerificationError):
    """The provider returned no usable record."""


class AmbiguousMatch(VerificationError):
    """Several records matched and none was close enough to the candidate."""


class MalformedCandidate(VerificationError):
    """The candidate is missing required input such as a title."""


class ProviderUnavailable(VerificationError):
    """Network/transport failure or timeout. Retry-eligible."""

    permanent = False


class ProviderRejected(VerificationError):
    """The provider refused the request itself, e.g. an invalid API key. Retrying cannot help."""


class StoreUnavailable(RecFlowError):
    """The durable store could not be read or written."""


class ConfigError(RecFlowError):
    """Invalid configuration value."""


class ExportError(RecFlowError):
    """Export of stored results failed."""


# =========================================
# Enums
# =========================================


class JobStatus(Enum):
    """Job processing status."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class LogType(Enum):
    INFO = "info"
    ERROR = "error"
    SUCCESS = "success"


class MediaType(Enum):
    MOVIE = "movie"
    TV = "tv"

    @classmethod
    def coerce(cls, value: Any) -> "MediaType":
        if isinstance(value, MediaType):
            return value
        text = str(value or "").strip().lower()
        if text in ("series", "tv", "episode", "show", "tv_series"):
            return cls.TV
        return cls.MOVIE


# =========================================
# Records
# =========================================


def _first_present(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return default


@dataclass(frozen=True)
class RecommendationCandidate:
    """Raw, unverified recommendation produced by the candidate source."""

    id: str
    title: str
    year: Optional[int] = None
    synopsis: str = ""
    reason: str = ""
    ai_recommended: bool = True
    external_id: Optional[str] = None
    imdb_url: Optional[str] = None
    content_rating: Optional[str] = None
    media_type: Optional[str] = None

    @property
    def lookup_id(self) -> Optional[str]:
        """External identifier, explicit or extracted from the IMDb URL."""
        if self.external_id:
            return self.external_id
        if self.imdb_url:
            match = _IMDB_URL_RE.search(self.imdb_url)
            if match:
                return match.group(1)
        return None

    @property
    def identity(self) -> str:
        """Key used to coalesce duplicate submissions."""
        if self.id:
            return self.id
        return f"{normalize_title(self.title)}:{self.year or ''}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> "RecommendationCandidate":
        """Coerce an untrusted mapping. Missing titles are left for the verifier."""
        if not isinstance(data, Mapping):
            raise MalformedCandidate(f"candidate must be a mapping, got {type(data).__name__}")

        raw_id = _first_present(data, "id", "candidate_id")
        ai_flag = _first_present(data, "ai_recommended", "aiRecommended", default=True)
        return cls(
            id=str(raw_id) if raw_id is not None else "",
            title=str(data.get("title") or "").strip(),
            year=coerce_year(_first_present(data, "year", "release_date")),
            synopsis=str(_first_present(data, "synopsis", "overview", default="")),
            reason=str(_first_present(data, "reason", "recommendationReason", default="")),
            ai_recommended=bool(ai_flag),
            external_id=_first_present(data, "external_id", "imdb_id", "imdbID"),
            imdb_url=_first_present(data, "imdb_url", "imdbUrl"),
            content_rating=_first_present(data, "content_rating", "contentRating"),
            media_type=_first_present(data, "media_type", "type"),
        )


@dataclass(frozen=True)
class VerifiedContentItem:
    """Candidate enriched with authoritative provider metadata."""

    id: str
    title: str
    year: Optional[int] = None
    synopsis: str = ""
    reason: str = ""
    ai_recommended: bool = True
    content_rating: Optional[str] = None
    genres: FrozenSet[str] = frozenset()
    runtime: Optional[int] = None
    poster_url: Optional[str] = None
    vote_average: float = 0.0
    vote_count: int = 0
    media_type: MediaType = MediaType.MOVIE
    candidate_id: Optional[str] = None
    keywords: FrozenSet[str] = frozenset()
    low_confidence: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["genres"] = sorted(self.genres)
        d["keywords"] = sorted(self.keywords)
        d["media_type"] = self.media_type.value
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "VerifiedContentItem":
        return cls(
            id=str(d["id"]),
            title=d.get("title", ""),
            year=coerce_year(d.get("year")),
            synopsis=d.get("synopsis") or "",
            reason=d.get("reason") or "",
            ai_recommended=bool(d.get("ai_recommended", True)),
            content_rating=d.get("content_rating"),
            genres=frozenset(d.get("genres") or ()),
            runtime=d.get("runtime"),
            poster_url=d.get("poster_url"),
            vote_average=float(d.get("vote_average") or 0.0),
            vote_count=int(d.get("vote_count") or 0),
            media_type=MediaType.coerce(d.get("media_type")),
            candidate_id=d.get("candidate_id"),
            keywords=frozenset(d.get("keywords") or ()),
            low_confidence=bool(d.get("low_confidence", False)),
        )


@dataclass(frozen=True)
class SimilarityResult:
    """Similarity of one candidate to the reference item. All scores in [0, 1]."""

    content_id: str
    plot_similarity: float
    keyword_similarity: float
    title_similarity: float
    combined_similarity: float
    keywords_used: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QueueJob:
    """Enrichment job owned by the queue."""

    job_id: str
    payload: RecommendationCandidate
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    enqueued_at: datetime = field(default_factory=utcnow)
    available_at: float = 0.0
    updated_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error_kind: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "job_id": self.job_id,
            "payload": self.payload.to_dict(),
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "enqueued_at": self.enqueued_at.isoformat(),
            "available_at": self.available_at,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "result": self.result,
            "error_kind": self.error_kind,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "QueueJob":
        """Create from dictionary."""
        return cls(
            job_id=d["job_id"],
            payload=RecommendationCandidate.from_dict(d["payload"]),
            status=JobStatus(d.get("status", "pending")),
            attempts=int(d.get("attempts", 0)),
            last_error=d.get("last_error"),
            enqueued_at=_parse_datetime(d.get("enqueued_at")) or utcnow(),
            available_at=float(d.get("available_at", 0.0)),
            updated_at=_parse_datetime(d.get("updated_at")),
            finished_at=_parse_datetime(d.get("finished_at")),
            result=d.get("result"),
            error_kind=d.get("error_kind"),
        )


@dataclass(frozen=True)
class LogEntry:
    """Append-only pipeline log record polled by observers."""

    timestamp: datetime
    message: str
    type: LogType = LogType.INFO
    job_id: Optional[str] = None

    @classmethod
    def create(cls, message: str, type: LogType = LogType.INFO, job_id: Optional[str] = None):
        return cls(timestamp=utcnow(), message=message, type=type, job_id=job_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "type": self.type.value,
            "job_id": self.job_id,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "LogEntry":
        return cls(
            timestamp=_parse_datetime(d["timestamp"]),
            message=d["message"],
            type=LogType(d.get("type", "info")),
            job_id=d.get("job_id"),
        )
