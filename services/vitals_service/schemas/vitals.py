from datetime import datetime

from pydantic import BaseModel, AnyHttpUrl, Field

from services.vitals_service.integrations.crux_api import FieldDataScope, FormFactor


class LocalSample(BaseModel):
    value: float


class ReconcileRequest(BaseModel):
    url: AnyHttpUrl
    form_factor: FormFactor | None = None
    background: bool = False
    samples: dict[str, LocalSample | float] = Field(default_factory=dict)
    timestamp: datetime | None = None

    def sample_values(self) -> dict[str, float]:
        return {
            metric_id: sample.value if isinstance(sample, LocalSample) else sample
            for metric_id, sample in self.samples.items()
        }


class MetricView(BaseModel):
    id: str
    name: str
    abbr: str
    local_value: float
    formatted_value: str
    rating: str
    position: float = Field(ge=0.0, le=1.0)
    position_percent: str
    overflowed: bool = False
    info: str | None = None
    densities: list[str] | None = None
    widths: list[str] | None = None
    fractions: list[float] | None = None
    field_p75: float | None = None
    field_p75_formatted: str | None = None
    field_p75_rating: str | None = None
    comparison_text: str


class ReconciledView(BaseModel):
    url: str
    state: str
    status_message: str
    field_data_available: bool
    scope: FieldDataScope | None = None
    effective_url: str | None = None
    form_factor: FormFactor
    collection_period: tuple[str, str] | None = None
    measured_at: datetime | None = None
    measured_at_display: str | None = None
    min_bucket_width: float
    metrics: list[MetricView]
