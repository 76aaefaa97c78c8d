import math
import time
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlsplit, urlunsplit

import httpx
from prometheus_client import Counter, Histogram

from config.logging_config import FieldDataLogger, get_logger, log_external_api_call
from services.vitals_service.config import settings
from services.vitals_service.errors import FieldDataTransportError, FieldDataUnavailable
from services.vitals_service.metrics.metric import Distribution
from services.vitals_service.metrics.thresholds import MetricKind, is_legacy_metric

logger = get_logger(__name__)
field_logger = FieldDataLogger()

field_data_requests_total = Counter(
    'field_data_requests_total',
    'Field data API requests by query scope and outcome',
    ['scope', 'outcome']
)

field_data_request_duration = Histogram(
    'field_data_request_duration_seconds',
    'Duration of field data API requests',
    ['scope']
)


class FormFactor(str, Enum):
    PHONE = "PHONE"
    DESKTOP = "DESKTOP"


class FieldDataScope(str, Enum):
    PAGE = "page"
    ORIGIN_FALLBACK = "origin-fallback"


@dataclass(frozen=True)
class FieldDataResult:
    scope: FieldDataScope
    effective_url: str
    distributions: dict[MetricKind, Distribution]
    form_factor: FormFactor
    percentiles: dict[MetricKind, float] = field(default_factory=dict)
    collection_period: tuple[str, str] | None = None

    @property
    def is_origin_fallback(self) -> bool:
        return self.scope is FieldDataScope.ORIGIN_FALLBACK


def _host_of(parts) -> str:
    host = parts.hostname
    if parts.port:
        host = f"{host}:{parts.port}"
    return host


def normalize_page_url(url: str) -> str:
    parts = urlsplit(url.strip())
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Not an http(s) URL: {url!r}")
    path = parts.path or "/"
    return urlunsplit((parts.scheme, _host_of(parts), path, "", ""))


def origin_of(url: str) -> str:
    parts = urlsplit(url.strip())
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Not an http(s) URL: {url!r}")
    return f"{parts.scheme}://{_host_of(parts)}"


def _as_float(value) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"Non-finite number {value!r}")
    return number


def _bucket_of(kind: MetricKind, value: float) -> int:
    if value < kind.thresholds.good:
        return 0
    if value < kind.thresholds.poor:
        return 1
    return 2


def normalize_histogram(kind: MetricKind, bins: list[dict]) -> Distribution:
    """Fold API histogram bins into good / needs-improvement / poor buckets.

    Target bucket boundaries are the kind's own thresholds. A bounded bin that
    straddles a boundary is split in proportion to its overlap with each
    bucket; open-ended and zero-width bins go to the bucket holding their start.
    """
    bounds = (0.0, float(kind.thresholds.good), float(kind.thresholds.poor), math.inf)
    buckets = [0.0, 0.0, 0.0]

    for b in bins:
        start = _as_float(b.get("start", 0))
        density = _as_float(b.get("density", 0))
        end = b.get("end")
        end = _as_float(end) if end is not None else None

        if end is None or end <= start:
            buckets[_bucket_of(kind, start)] += density
            continue

        width = end - start
        for i in range(3):
            overlap = min(end, bounds[i + 1]) - max(start, bounds[i])
            if overlap > 0:
                buckets[i] += density * overlap / width

    return Distribution(good=buckets[0], needs_improvement=buckets[1], poor=buckets[2])


def _collection_period(record: dict) -> tuple[str, str] | None:
    period = record.get("collectionPeriod") or {}
    first, last = period.get("firstDate"), period.get("lastDate")
    if not first or not last:
        return None
    fmt = "{year:04d}-{month:02d}-{day:02d}"
    try:
        return fmt.format(**first), fmt.format(**last)
    except (KeyError, ValueError):
        return None


def parse_record(payload: dict, scope: FieldDataScope, form_factor: FormFactor, fallback_url: str) -> FieldDataResult:
    record = payload.get("record") if isinstance(payload, dict) else None
    if not isinstance(record, dict) or not isinstance(record.get("metrics"), dict):
        raise FieldDataTransportError("Malformed field data payload: missing record metrics")

    distributions: dict[MetricKind, Distribution] = {}
    percentiles: dict[MetricKind, float] = {}

    for name, data in record["metrics"].items():
        kind = MetricKind.from_crux_name(name)
        if kind is None:
            if not is_legacy_metric(name):
                logger.debug(f"Skipping unsupported field metric {name}")
            continue
        if not isinstance(data, dict):
            raise FieldDataTransportError(f"Malformed field data payload for {name}")

        histogram = data.get("histogram")
        if histogram is not None:
            if not isinstance(histogram, list):
                raise FieldDataTransportError(f"Malformed histogram for {name}")
            try:
                distributions[kind] = normalize_histogram(kind, histogram)
            except (TypeError, ValueError, AttributeError) as e:
                raise FieldDataTransportError(f"Malformed histogram for {name}: {e}") from e

        p75 = (data.get("percentiles") or {}).get("p75")
        if p75 is not None:
            try:
                percentiles[kind] = _as_float(p75)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring unparseable p75 {p75!r} for {name}")

    key = record.get("key") or {}
    if scope is FieldDataScope.ORIGIN_FALLBACK:
        effective_url = key.get("origin") or fallback_url
    else:
        details = payload.get("urlNormalizationDetails") or {}
        effective_url = details.get("normalizedUrl") or key.get("url") or fallback_url

    return FieldDataResult(
        scope=scope,
        effective_url=effective_url,
        distributions=distributions,
        form_factor=form_factor,
        percentiles=percentiles,
        collection_period=_collection_period(record),
    )


class FieldDataClient:
    """Chrome UX Report client with page-level to origin-level fallback.

    A single attempt is made per call; failures are never retried.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        timeout_s: float | None = None,
        user_agent: str | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.crux_api_key
        self.api_url = api_url or settings.crux_api_url
        self.timeout_s = timeout_s or settings.field_data_timeout_s
        self.user_agent = user_agent or settings.user_agent

    async def load(self, url: str, form_factor: FormFactor = FormFactor.PHONE) -> FieldDataResult:
        form_factor = FormFactor(form_factor)
        page_url = normalize_page_url(url)
        origin = origin_of(url)
        field_logger.log_fetch_started(page_url, form_factor.value)

        params = {"key": self.api_key} if self.api_key else None
        headers = {"User-Agent": self.user_agent}
        async with httpx.AsyncClient(timeout=self.timeout_s, headers=headers, params=params) as client:
            payload = await self._query(client, "url", page_url, form_factor)
            if payload is not None:
                return parse_record(payload, FieldDataScope.PAGE, form_factor, page_url)

            payload = await self._query(client, "origin", origin, form_factor)
            if payload is not None:
                field_logger.log_origin_fallback(page_url, origin, form_factor.value)
                return parse_record(payload, FieldDataScope.ORIGIN_FALLBACK, form_factor, origin)

        raise FieldDataUnavailable(page_url, form_factor.value)

    async def _query(self, client: httpx.AsyncClient, key: str, value: str, form_factor: FormFactor) -> dict | None:
        """Return the API payload, or None for the documented not-found response."""
        body = {key: value, "formFactor": form_factor.value}
        started = time.monotonic()
        status_code = None
        try:
            with field_data_request_duration.labels(scope=key).time():
                r = await client.post(self.api_url, json=body)
            status_code = r.status_code

            if r.status_code == 404:
                log_external_api_call(logger, "crux", key, time.monotonic() - started, status_code)
                field_data_requests_total.labels(scope=key, outcome="not_found").inc()
                return None

            if r.status_code >= 400:
                raise FieldDataTransportError(
                    f"Field data API returned HTTP {r.status_code}: {_error_message(r)}",
                    status_code=r.status_code,
                )

            payload = r.json()
            if not isinstance(payload, dict):
                raise FieldDataTransportError("Malformed field data payload: expected a JSON object", status_code=status_code)
        except httpx.TimeoutException as e:
            self._record_failure(key, started, status_code, e, "timeout")
            raise FieldDataTransportError(f"Field data request timed out after {self.timeout_s}s") from e
        except httpx.HTTPError as e:
            self._record_failure(key, started, status_code, e, "transport_error")
            raise FieldDataTransportError(f"Field data request failed: {e}") from e
        except ValueError as e:
            self._record_failure(key, started, status_code, e, "malformed")
            raise FieldDataTransportError(f"Malformed field data payload: {e}", status_code=status_code) from e
        except FieldDataTransportError as e:
            self._record_failure(key, started, status_code, e, "http_error")
            raise

        log_external_api_call(logger, "crux", key, time.monotonic() - started, status_code)
        field_data_requests_total.labels(scope=key, outcome="found").inc()
        return payload

    def _record_failure(self, key, started, status_code, error, outcome):
        log_external_api_call(logger, "crux", key, time.monotonic() - started, status_code, error=error)
        field_data_requests_total.labels(scope=key, outcome=outcome).inc()


def _error_message(r: httpx.Response) -> str:
    try:
        error = r.json().get("error") or {}
        return error.get("message") or r.reason_phrase
    except (ValueError, AttributeError):
        return r.reason_phrase
