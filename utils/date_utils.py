import math
from datetime import date, datetime
from typing import Optional, Union

from services.exceptions import ValidationError


def parse_day(value: Union[str, date, None], field: str = "date") -> date:
    """
    Parse an ISO calendar day (YYYY-MM-DD).

    Datetimes are truncated to their date. Raises ValidationError on
    missing or malformed input.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", {"field": field})

    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Invalid {field}: {value}", {"field": field, "value": value}) from e


def parse_timestamp(value: Union[str, datetime, None], field: str = "timestamp") -> Optional[datetime]:
    """
    Parse an ISO date+time (YYYY-MM-DDTHH:MM:SS).

    Returns None for empty input so callers can default to now.
    """
    if isinstance(value, datetime):
        return value
    if value is None or not str(value).strip():
        return None

    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Invalid {field}: {value}", {"field": field, "value": value}) from e


def parse_confidence(value, field: str = "confidence") -> Optional[float]:
    """
    Confidence as a float in [0, 1]; None when absent or blank.

    Raises ValidationError for non-numeric, non-finite or out-of-range values.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}: {value}", {"field": field, "value": value})

    try:
        confidence = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {field}: {value}", {"field": field, "value": value}) from e

    if not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
        raise ValidationError(
            f"{field} must be between 0 and 1: {value}",
            {"field": field, "value": value}
        )
    return confidence
