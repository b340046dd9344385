"""
Typed records flowing through the rollup engine.

Inputs (``RawMeasurement``, ``Citation``, ``QueryInfo``) are read-only and
supplied per request.  Outputs (``RollupResult``, ``DistributionSlice`` and the
``DashboardPayload`` rows) are immutable once produced and never persisted by
this package.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

RawNumber = Union[str, int, float, None]


class Scale(str, Enum):
    """Known encoding of a raw numeric field, tagged at ingestion."""
    FRACTION = "fraction"   # 0..1
    PERCENT = "percent"     # 0..100
    BIPOLAR = "bipolar"     # -1..1 (sentiment)


class SubjectKind(str, Enum):
    BRAND = "brand"
    COMPETITOR = "competitor"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawMeasurement:
    """One subject's measurement inside one collector response."""
    subject_kind: SubjectKind
    subject_name: str
    collector_type: str = ""
    query_id: Optional[str] = None
    collector_response_id: Optional[str] = None
    topic: Optional[str] = None
    query_text: Optional[str] = None
    share_value: RawNumber = None
    share_scale: Scale = Scale.FRACTION
    visibility_value: RawNumber = None
    visibility_scale: Scale = Scale.FRACTION
    sentiment_value: RawNumber = None
    sentiment_scale: Scale = Scale.BIPOLAR
    mention_count: RawNumber = None
    timestamp: Optional[datetime] = None

    @property
    def is_brand(self) -> bool:
        return self.subject_kind == SubjectKind.BRAND


@dataclass(frozen=True)
class Citation:
    domain: str
    category: Optional[str] = None
    usage_count: RawNumber = None
    query_id: Optional[str] = None
    collector_response_id: Optional[str] = None


@dataclass(frozen=True)
class QueryInfo:
    query_id: str
    query_text: str = ""
    topic: Optional[str] = None


@dataclass(frozen=True)
class Brand:
    brand_id: str
    name: str


@dataclass(frozen=True)
class ReportScope:
    brand_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    collector_filter: Tuple[str, ...] = ()
    competitor_filter: Optional[str] = None


@dataclass(frozen=True)
class ResolvedScope:
    brand_id: str
    start: datetime
    end: datetime
    collector_filter: Tuple[str, ...] = ()
    competitor_filter: Optional[str] = None


@dataclass
class ReportInputs:
    """Every collection one aggregation pass needs, fetched in full."""
    brand: Brand
    measurements: List[RawMeasurement] = field(default_factory=list)
    citations: List[Citation] = field(default_factory=list)
    competitors: List[str] = field(default_factory=list)
    queries: List[QueryInfo] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Rollup outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Trend:
    direction: TrendDirection = TrendDirection.NEUTRAL
    delta: float = 0.0


@dataclass(frozen=True)
class RollupResult:
    """Averaged/derived metric set for one aggregation group.

    ``share``, ``visibility`` and ``sentiment`` are on the canonical 0–100
    scale and are ``None`` when the group had no samples for that metric.
    """
    key: str
    label: str
    share: Optional[float]
    visibility: Optional[float]
    sentiment: Optional[float]
    trend: Trend
    sample_count: int
    mentions: int = 0
    collectors: Tuple[str, ...] = ()
    query_count: int = 0
    share_of_universe: Optional[float] = None
    presence_rate: Optional[float] = None


@dataclass(frozen=True)
class DistributionSlice:
    label: str
    percentage: float
    color: str
    value: float
    is_other: bool = False


@dataclass(frozen=True)
class SourceUsage:
    domain: str
    usage: int


# ---------------------------------------------------------------------------
# Assembler inputs
# ---------------------------------------------------------------------------

@dataclass
class TopicRollup:
    result: RollupResult
    competitor_set: Optional[RollupResult] = None
    top_sources: List[SourceUsage] = field(default_factory=list)


@dataclass
class QueryRollup:
    result: RollupResult
    query_id: Optional[str] = None
    query_text: str = ""
    topic: Optional[str] = None
    competitors: List[RollupResult] = field(default_factory=list)


@dataclass
class CompetitorRollup:
    result: RollupResult
    top_topics: List[RollupResult] = field(default_factory=list)


@dataclass
class CollectorRollup:
    result: RollupResult
    top_topic: Optional[str] = None


@dataclass
class ReportRollups:
    brand: RollupResult
    brand_trends: Dict[str, Trend] = field(default_factory=dict)
    topics: List[TopicRollup] = field(default_factory=list)
    queries: List[QueryRollup] = field(default_factory=list)
    collectors: List[CollectorRollup] = field(default_factory=list)
    competitors: List[CompetitorRollup] = field(default_factory=list)


@dataclass(frozen=True)
class ReportMetadata:
    brand_id: str
    brand_name: str
    start: datetime
    end: datetime
    generated_at: datetime
    known_competitors: Tuple[str, ...] = ()
    collector_filter: Tuple[str, ...] = ()
    competitor_filter: Optional[str] = None
    neutral_sentiment: float = 50.0


# ---------------------------------------------------------------------------
# Payload rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScoreCard:
    key: str
    label: str
    value: Optional[float]
    trend: Trend = field(default_factory=Trend)


@dataclass(frozen=True)
class Standing:
    entity: str
    is_brand: bool
    rank: int
    mentions: int
    share: float
    share_of_universe: float
    visibility: float
    sentiment: Optional[float]


@dataclass(frozen=True)
class TopicSignal:
    topic: str
    share: float
    visibility: float
    mentions: int
    occurrences: int


@dataclass(frozen=True)
class CompetitorRow:
    competitor: str
    mentions: int
    share: float
    visibility: float
    sentiment: Optional[float]
    presence_rate: float
    share_of_universe: float
    trend: Trend
    collectors: Tuple[str, ...] = ()
    top_topics: Tuple[TopicSignal, ...] = ()


@dataclass(frozen=True)
class CompetitorCell:
    competitor: str
    share: float
    visibility: float
    sentiment: Optional[float]


@dataclass(frozen=True)
class TopicRow:
    topic: str
    share: Optional[float]
    visibility: Optional[float]
    sentiment: Optional[float]
    trend: Trend
    collectors: Tuple[str, ...]
    top_sources: Tuple[SourceUsage, ...]
    query_count: int
    sample_count: int
    mentions: int
    competitor_label: str
    competitor_share: Optional[float]
    competitor_visibility: Optional[float]
    competitor_sentiment: Optional[float]


@dataclass(frozen=True)
class QueryRow:
    query_key: str
    query_id: Optional[str]
    query_text: str
    topic: Optional[str]
    brand_share: Optional[float]
    brand_visibility: Optional[float]
    brand_sentiment: Optional[float]
    trend: Trend
    collectors: Tuple[str, ...]
    competitors: Tuple[CompetitorCell, ...]


@dataclass(frozen=True)
class CollectorRow:
    collector: str
    color: str
    share: Optional[float]
    visibility: Optional[float]
    sentiment: Optional[float]
    trend: Trend
    mentions: int
    presence_rate: Optional[float]
    top_topic: Optional[str]


@dataclass(frozen=True)
class DashboardPayload:
    brand_id: str
    brand_name: str
    start: datetime
    end: datetime
    generated_at: datetime
    has_data: bool
    scores: Tuple[ScoreCard, ...]
    standings: Tuple[Standing, ...]
    competitors: Tuple[CompetitorRow, ...]
    topics: Tuple[TopicRow, ...]
    queries: Tuple[QueryRow, ...]
    collectors: Tuple[CollectorRow, ...]
    source_distribution: Tuple[DistributionSlice, ...]
    category_distribution: Tuple[DistributionSlice, ...]
    collector_filter: Tuple[str, ...] = ()
    competitor_filter: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return _plain(self)


def _plain(value: Any) -> Any:
    """Recursively convert dataclasses, enums and datetimes to JSON types."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value

