import math
from dataclasses import dataclass, astuple
from enum import Enum

from services.vitals_service.errors import DistributionAlreadyAttached, InvalidDistribution, InvalidSample
from services.vitals_service.metrics.thresholds import MetricKind, MetricThresholds


# The poor boundary sits at this fraction of every metric's bar.
POOR_BOUNDARY_POSITION = 0.8

# Renderers keep non-zero buckets at least this wide (fraction of the bar).
MIN_BUCKET_WIDTH = 0.01

DISTRIBUTION_TOLERANCE = 1e-3

DENSITY_UNAVAILABLE = "n/a"


class Rating(str, Enum):
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs-improvement"
    POOR = "poor"


RATINGS = (Rating.GOOD, Rating.NEEDS_IMPROVEMENT, Rating.POOR)


def _check_sample(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidSample(f"Sample must be a number, got {type(value).__name__}")
    if not math.isfinite(value) or value < 0:
        raise InvalidSample(f"Sample must be finite and non-negative, got {value!r}")
    return float(value)


def rate(kind: MetricKind, value: float) -> Rating:
    value = _check_sample(value)
    thresholds = kind.thresholds
    if value < thresholds.good:
        return Rating.GOOD
    if value < thresholds.poor:
        return Rating.NEEDS_IMPROVEMENT
    return Rating.POOR


def assessment_index(rating: Rating) -> int:
    return RATINGS.index(Rating(rating))


@dataclass(frozen=True)
class Distribution:
    good: float
    needs_improvement: float
    poor: float

    def __getitem__(self, index: int) -> float:
        return astuple(self)[index]

    @property
    def fractions(self) -> list[float]:
        return list(astuple(self))

    @property
    def total(self) -> float:
        return self.good + self.needs_improvement + self.poor

    def validate(self) -> "Distribution":
        for fraction in astuple(self):
            if not isinstance(fraction, (int, float)) or not math.isfinite(fraction) or fraction < 0:
                raise InvalidDistribution(f"Invalid bucket fraction {fraction!r} in {self}")
        if self.total > 1.0 + DISTRIBUTION_TOLERANCE:
            raise InvalidDistribution(f"Bucket fractions sum to {self.total:.4f} > 1.0")
        return self


@dataclass(frozen=True)
class Position:
    fraction: float
    overflowed: bool = False

    @property
    def percent(self) -> str:
        return f"{self.fraction * 100:.2f}%"


class Metric:
    """A local sample for one metric kind, optionally reconciled with field data.

    The local rating depends only on the local value. A field distribution
    can be attached once; invalid distributions are rejected and the metric
    keeps working with local data only.
    """

    def __init__(self, kind: MetricKind, local: float, background: bool = False):
        self.kind = kind
        self.local = _check_sample(local)
        self.background = background
        self._distribution: Distribution | None = None

    def __repr__(self) -> str:
        return f"Metric({self.kind.name}, local={self.local}, rating={self.local_rating.value})"

    @property
    def thresholds(self) -> MetricThresholds:
        return self.kind.thresholds

    @property
    def id(self) -> str:
        return self.thresholds.id

    @property
    def abbr(self) -> str:
        return self.thresholds.abbr

    @property
    def name(self) -> str:
        return self.thresholds.display_name

    @property
    def scale_max(self) -> float:
        return self.thresholds.poor / POOR_BOUNDARY_POSITION

    @property
    def local_rating(self) -> Rating:
        return self.rating(self.local)

    @property
    def distribution(self) -> Distribution | None:
        return self._distribution

    @property
    def has_field_data(self) -> bool:
        return self._distribution is not None

    def rating(self, value: float) -> Rating:
        return rate(self.kind, value)

    def assessment_index(self, rating: Rating) -> int:
        return assessment_index(rating)

    def format_value(self, value: float) -> str:
        return self.thresholds.format_value(value)

    def relative_position(self, value: float) -> Position:
        value = _check_sample(value)
        fraction = value / self.scale_max
        if fraction > 1.0:
            return Position(1.0, overflowed=True)
        return Position(fraction)

    def attach_distribution(self, distribution: Distribution) -> None:
        if self._distribution is not None:
            raise DistributionAlreadyAttached(f"{self.abbr} already has a field distribution")
        self._distribution = distribution.validate()

    def density(self, bucket_index: int, precision: int = 0) -> str:
        if bucket_index not in (0, 1, 2):
            raise IndexError(f"Bucket index must be 0, 1 or 2, got {bucket_index!r}")
        if self._distribution is None:
            return DENSITY_UNAVAILABLE
        return f"{self._distribution[bucket_index] * 100:.{precision}f}%"

    def densities(self, precision: int = 0) -> list[str] | None:
        if self._distribution is None:
            return None
        return [self.density(i, precision) for i in range(len(RATINGS))]

    def fractions(self) -> list[float] | None:
        if self._distribution is None:
            return None
        return self._distribution.fractions

    def info(self) -> str | None:
        if self.background and self.kind in (MetricKind.LCP, MetricKind.FCP):
            return f"{self.abbr} may be inflated because the page was loaded in a background tab."
        return None
