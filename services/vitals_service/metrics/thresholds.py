from dataclasses import dataclass
from enum import Enum


def format_duration(value: float) -> str:
    ms = round(value)
    if ms < 1000:
        return f"{ms} ms"
    return f"{value / 1000:.2f} s"


def format_score(value: float) -> str:
    return f"{value:.2f}"


@dataclass(frozen=True)
class MetricThresholds:
    id: str
    abbr: str
    name: str
    good: float
    poor: float
    unit: str
    crux_names: tuple[str, ...]

    def format_value(self, value: float) -> str:
        if self.unit == "ms":
            return format_duration(value)
        return format_score(value)

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.abbr})"


class MetricKind(Enum):
    LCP = MetricThresholds(
        id="lcp",
        abbr="LCP",
        name="Largest Contentful Paint",
        good=2500,
        poor=4000,
        unit="ms",
        crux_names=("largest_contentful_paint",),
    )
    CLS = MetricThresholds(
        id="cls",
        abbr="CLS",
        name="Cumulative Layout Shift",
        good=0.1,
        poor=0.25,
        unit="",
        crux_names=("cumulative_layout_shift",),
    )
    FCP = MetricThresholds(
        id="fcp",
        abbr="FCP",
        name="First Contentful Paint",
        good=1800,
        poor=3000,
        unit="ms",
        crux_names=("first_contentful_paint",),
    )
    TTFB = MetricThresholds(
        id="ttfb",
        abbr="TTFB",
        name="Time to First Byte",
        good=800,
        poor=1800,
        unit="ms",
        crux_names=("experimental_time_to_first_byte", "time_to_first_byte"),
    )

    @property
    def thresholds(self) -> MetricThresholds:
        return self.value

    @property
    def id(self) -> str:
        return self.value.id

    @classmethod
    def from_id(cls, metric_id: str) -> "MetricKind":
        for kind in cls:
            if kind.value.id == metric_id.lower():
                return kind
        raise ValueError(f"Unknown metric kind: {metric_id!r}")

    @classmethod
    def from_crux_name(cls, crux_name: str) -> "MetricKind | None":
        return _CRUX_NAMES.get(crux_name)


# INP was removed from display. It is still recognised in payloads and in
# persisted samples so that it can be skipped, never rated.
LEGACY_METRIC_IDS = frozenset({"inp"})
LEGACY_CRUX_METRICS = frozenset({"interaction_to_next_paint"})

_CRUX_NAMES = {name: kind for kind in MetricKind for name in kind.value.crux_names}


def thresholds_for(kind: MetricKind) -> MetricThresholds:
    if not isinstance(kind, MetricKind):
        raise TypeError(f"Expected MetricKind, got {type(kind).__name__}")
    return kind.value


def is_legacy_metric(metric_id: str) -> bool:
    return metric_id.lower() in LEGACY_METRIC_IDS or metric_id in LEGACY_CRUX_METRICS
