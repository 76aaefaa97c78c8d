import asyncio
from collections.abc import Mapping
from enum import Enum

from config.logging_config import FieldDataLogger, get_logger
from services.vitals_service.errors import FieldDataError, FieldDataUnavailable, InvalidDistribution, InvalidSample
from services.vitals_service.integrations.crux_api import FieldDataClient, FieldDataResult
from services.vitals_service.metrics.metric import MIN_BUCKET_WIDTH, Metric
from services.vitals_service.metrics.thresholds import MetricKind, is_legacy_metric
from services.vitals_service.reconciliation.context import PageContext
from services.vitals_service.reconciliation.summary import comparison_text, status_message
from services.vitals_service.schemas.vitals import MetricView, ReconciledView

logger = get_logger(__name__)
field_logger = FieldDataLogger()


class CoordinatorState(str, Enum):
    IDLE = "idle"
    FETCHING_FIELD = "fetching-field"
    RECONCILED = "reconciled"
    FIELD_UNAVAILABLE = "field-unavailable"
    CLOSED = "closed"


def build_metrics(samples: Mapping, background: bool = False) -> dict[MetricKind, Metric]:
    """Wrap local samples into metrics, in MetricKind order.

    Keys are MetricKind members or metric ids; values are numbers or
    mappings with a "value" entry. Legacy ids (INP) are skipped.
    """
    metrics: dict[MetricKind, Metric] = {}
    for key, sample in samples.items():
        if isinstance(key, MetricKind):
            kind = key
        elif is_legacy_metric(key):
            logger.debug(f"Ignoring legacy metric sample {key}")
            continue
        else:
            kind = MetricKind.from_id(key)

        value = sample.get("value") if isinstance(sample, Mapping) else sample
        if value is None:
            raise InvalidSample(f"Missing value for {kind.id} sample")
        metrics[kind] = Metric(kind, value, background=background)

    return {kind: metrics[kind] for kind in MetricKind if kind in metrics}


class ReconciliationCoordinator:
    """Reconciles local metrics with field data for one page view.

    idle -> fetching-field -> reconciled | field-unavailable; closed is
    terminal. The field data fetch happens once and is never retried.
    Field data failures only reduce what the view contains.
    """

    def __init__(self, context: PageContext, samples: Mapping, client: FieldDataClient | None = None):
        self.context = context
        self.client = client or FieldDataClient(timeout_s=context.timeout_s)
        self.metrics = build_metrics(samples, background=context.background)
        self.state = CoordinatorState.IDLE
        self.result: FieldDataResult | None = None
        self._task: asyncio.Task | None = None

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    def start(self) -> asyncio.Task | None:
        if self.state is CoordinatorState.IDLE:
            self.state = CoordinatorState.FETCHING_FIELD
            self._task = asyncio.get_running_loop().create_task(self._fetch())
        return self._task

    async def wait(self) -> ReconciledView:
        task = self.start()
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self.view()

    async def reconcile(self) -> ReconciledView:
        return await self.wait()

    def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.state = CoordinatorState.CLOSED

    async def _fetch(self) -> None:
        url = self.context.url
        form_factor = self.context.form_factor.value
        try:
            result = await asyncio.wait_for(
                self.client.load(url, self.context.form_factor),
                timeout=self.context.timeout_s,
            )
        except FieldDataUnavailable:
            self._mark_unavailable("no page-level or origin-level record")
            return
        except FieldDataError as e:
            self._mark_unavailable(str(e))
            return
        except asyncio.TimeoutError:
            self._mark_unavailable(f"timed out after {self.context.timeout_s}s")
            return
        except Exception as e:
            logger.error(f"Unexpected field data failure for {url} ({form_factor}): {e}", exc_info=True)
            self._mark_unavailable(f"{type(e).__name__}: {e}")
            return

        if self.state is CoordinatorState.CLOSED:
            return
        self._reconcile(result)

    def _mark_unavailable(self, reason: str) -> None:
        if self.state is CoordinatorState.CLOSED:
            return
        field_logger.log_unavailable(self.context.url, self.context.form_factor.value, reason)
        self.state = CoordinatorState.FIELD_UNAVAILABLE

    def _reconcile(self, result: FieldDataResult) -> None:
        attached = []
        for kind, metric in self.metrics.items():
            distribution = result.distributions.get(kind)
            if distribution is None:
                continue
            try:
                metric.attach_distribution(distribution)
            except InvalidDistribution as e:
                field_logger.log_distribution_rejected(metric.id, e)
                continue
            attached.append(metric.id)

        self.result = result
        self.state = CoordinatorState.RECONCILED
        field_logger.log_reconciled(result.effective_url, result.scope.value, attached)

    def view(self) -> ReconciledView:
        result = self.result
        measured_at = self.context.measured_at
        loading = self.state in (CoordinatorState.IDLE, CoordinatorState.FETCHING_FIELD)
        return ReconciledView(
            url=self.context.url,
            state=self.state.value,
            status_message=status_message(result, loading=loading),
            field_data_available=result is not None,
            scope=result.scope if result else None,
            effective_url=result.effective_url if result else None,
            form_factor=self.context.form_factor,
            collection_period=result.collection_period if result else None,
            measured_at=measured_at,
            measured_at_display=measured_at.strftime("%H:%M:%S") if measured_at else None,
            min_bucket_width=MIN_BUCKET_WIDTH,
            metrics=[self._metric_view(metric) for metric in self.metrics.values()],
        )

    def _metric_view(self, metric: Metric) -> MetricView:
        position = metric.relative_position(metric.local)
        p75 = self.result.percentiles.get(metric.kind) if self.result else None
        p75_rating = None
        if p75 is not None:
            try:
                p75_rating = metric.rating(p75).value
            except InvalidSample:
                p75 = None

        return MetricView(
            id=metric.id,
            name=metric.name,
            abbr=metric.abbr,
            local_value=metric.local,
            formatted_value=metric.format_value(metric.local),
            rating=metric.local_rating.value,
            position=position.fraction,
            position_percent=position.percent,
            overflowed=position.overflowed,
            info=metric.info(),
            densities=metric.densities(),
            widths=metric.densities(2),
            fractions=metric.fractions(),
            field_p75=p75,
            field_p75_formatted=metric.format_value(p75) if p75 is not None else None,
            field_p75_rating=p75_rating,
            comparison_text=comparison_text(metric, self.result),
        )
