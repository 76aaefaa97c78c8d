from dataclasses import dataclass
from datetime import datetime

from services.vitals_service.config import settings
from services.vitals_service.integrations.crux_api import FormFactor, normalize_page_url


@dataclass(frozen=True)
class PageContext:
    """Everything a coordinator needs to know about the page view it serves."""

    url: str
    form_factor: FormFactor = FormFactor.PHONE
    timeout_s: float = 5.0
    background: bool = False
    measured_at: datetime | None = None

    def __post_init__(self):
        normalize_page_url(self.url)
        object.__setattr__(self, "form_factor", FormFactor(self.form_factor))
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s!r}")

    @classmethod
    def from_settings(
        cls,
        url: str,
        prefer_phone_field: bool | None = None,
        background: bool = False,
        measured_at: datetime | None = None,
    ) -> "PageContext":
        if prefer_phone_field is None:
            prefer_phone_field = settings.prefer_phone_field
        form_factor = FormFactor.PHONE if prefer_phone_field else FormFactor.DESKTOP
        return cls(
            url=url,
            form_factor=form_factor,
            timeout_s=settings.field_data_timeout_s,
            background=background,
            measured_at=measured_at,
        )
