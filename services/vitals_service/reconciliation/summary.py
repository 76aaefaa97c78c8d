from services.vitals_service.integrations.crux_api import FieldDataResult, FormFactor
from services.vitals_service.metrics.metric import Metric

LOADING_MESSAGE = "Loading field data…"
LOCAL_ONLY_MESSAGE = "Local metrics only (field data unavailable)"


def status_message(result: FieldDataResult | None, loading: bool = False) -> str:
    if loading:
        return LOADING_MESSAGE
    if result is None:
        return LOCAL_ONLY_MESSAGE
    device = result.form_factor.value.lower()
    if result.is_origin_fallback:
        return (
            "Page-level field data is not available. "
            f"Comparing local metrics to origin-level {device} field data instead"
        )
    return f"Local metrics compared to {device} field data"


def comparison_text(metric: Metric, result: FieldDataResult | None = None) -> str:
    abbr = metric.abbr
    rating = metric.local_rating.value
    text = f"Your local {abbr} experience is {metric.format_value(metric.local)} and rated {rating}."

    if result is None or not metric.has_field_data:
        return text

    density = metric.density(metric.assessment_index(metric.local_rating), 0)
    scope = "origin" if result.is_origin_fallback else "page"
    device = FormFactor(result.form_factor).value.lower()
    return (
        f"{text} {density} of real-user {device} {abbr} experiences "
        f"on this {scope} were also rated {rating}."
    )
