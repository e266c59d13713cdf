"""
Shared utilities for the HMRC integration.
"""

import base64
import json
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Literal, Optional, Tuple

from hmrc_rti.config import Config

EnvironmentType = Literal["sandbox", "production"]

PERIOD_TYPE_CODES = {
    'weekly': 'W1',
    'fortnightly': 'W2',
    'four_weekly': 'W4',
    'monthly': 'M1',
}
DEFAULT_PERIOD_CODE = 'M1'

_TWO_PLACES = Decimal('0.01')


def normalize_environment(env: Optional[str]) -> EnvironmentType:
    """
    Normalize an environment string to "sandbox" or "production".

    Accepts: "sandbox", "test", "production", "prod", "live" (any case).
    None means sandbox. Raises ValueError for anything else.
    """
    if env is None:
        return "sandbox"
    env_lower = str(env).lower().strip()

    if env_lower in ("sandbox", "test"):
        return "sandbox"
    elif env_lower in ("production", "prod", "live"):
        return "production"
    else:
        raise ValueError(f"Invalid environment: {env}. Must be 'sandbox' or 'production'")


def get_base_url(environment: Optional[str]) -> str:
    """Base URL of the HMRC API for the given environment."""
    if normalize_environment(environment) == "production":
        return Config.HMRC_PRODUCTION_BASE_URL.rstrip('/')
    return Config.HMRC_SANDBOX_BASE_URL.rstrip('/')


def encode_canonical_json(value: Any) -> str:
    """Base64 of compact UTF-8 JSON, keys kept in their declared order."""
    payload = json.dumps(value, separators=(',', ':'), ensure_ascii=False)
    return base64.b64encode(payload.encode('utf-8')).decode('ascii')


def split_paye_reference(reference: str) -> Tuple[str, str]:
    """Split "123/AB45678" into office number and office reference."""
    office_number, _, office_reference = (reference or '').partition('/')
    return office_number, office_reference


def mask_paye_reference(reference: Optional[str]) -> str:
    """Mask an employer reference for logs, keeping the office number."""
    if not reference or len(reference) < 4:
        return '***'
    return reference[:3] + '/***' + reference[-2:]


def map_period_type(period_type: Optional[str]) -> str:
    return PERIOD_TYPE_CODES.get(period_type, DEFAULT_PERIOD_CODE)


def format_date(value) -> str:
    """Render a date, datetime or date string as YYYY-MM-DD."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    raise TypeError(f"Unsupported date value: {value!r}")


def format_money(value) -> str:
    """Two decimal places, half-up, from int/float/Decimal/str."""
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return str(amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def is_positive(value) -> bool:
    return value is not None and Decimal(str(value)) > 0


def escape_xml(value) -> str:
    """Escape the five XML entities; everything else passes through."""
    text = str(value)
    return (
        text.replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;')
        .replace("'", '&apos;')
    )
