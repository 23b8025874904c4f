"""
Lenient payload parsing helpers

Provider JSON is loosely typed: numbers arrive as strings, nested objects may be
null, optional fields disappear. These helpers coerce such values into defaults
so the per-provider payload models never fail on missing optional data.
"""

import math
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict


def to_float(value: Any, default: float = 0.0) -> float:
    """'12.5', '12.5%', 12, None -> float; anything unparseable -> default"""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip().rstrip("%").replace(",", "")
        if not value:
            return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def to_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    number = to_float(value, default=math.nan)
    return None if math.isnan(number) else number


def to_int(value: Any, default: int = 0) -> int:
    number = to_float(value, default=float(default))
    return int(number)


def to_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def dict_or_empty(value: Any) -> Any:
    return value if isinstance(value, dict) else {}


Number = Annotated[float, BeforeValidator(to_float)]
OptionalNumber = Annotated[Optional[float], BeforeValidator(to_optional_float)]
Count = Annotated[int, BeforeValidator(to_int)]
Text = Annotated[str, BeforeValidator(to_text)]


class LenientModel(BaseModel):
    """Base for provider payload models: unknown keys ignored, aliases accepted"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)
