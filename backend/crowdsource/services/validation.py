"""
Input validation shared by the engine services.
"""
import math
import re
from typing import Optional, Tuple

from .errors import ValidationError

E164_PATTERN = re.compile(r"^\+\d{9,15}$")


def require_identity(identity: Optional[str], label: str = "identity") -> str:
    """Return the stripped identity token or raise ValidationError."""
    if identity is None or not str(identity).strip():
        raise ValidationError(f"Missing {label}")
    identity = str(identity).strip()
    if len(identity) > 64:
        raise ValidationError(f"{label} is too long")
    return identity


def require_text(value: Optional[str], label: str, max_length: int = 5000) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"Missing {label}")
    value = str(value).strip()
    if len(value) > max_length:
        raise ValidationError(f"{label} exceeds {max_length} characters")
    return value


def require_coordinates(latitude, longitude) -> Tuple[float, float]:
    """Validate a (lat, lon) pair in WGS84 degrees."""
    if latitude is None or longitude is None:
        raise ValidationError("Latitude and longitude are required")
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise ValidationError("Latitude and longitude must be numbers")
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ValidationError("Latitude and longitude must be finite")
    if not -90.0 <= lat <= 90.0:
        raise ValidationError(f"Latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValidationError(f"Longitude out of range: {lon}")
    return lat, lon


def is_valid_e164(phone: Optional[str]) -> bool:
    """Canonical international format: '+' then 9-15 digits."""
    if not phone:
        return False
    return bool(E164_PATTERN.match(phone))


def mask_identity(identity: Optional[str]) -> Optional[str]:
    """Keep the last 4 characters, replace the rest with X."""
    if identity is None or len(identity) <= 4:
        return identity
    return "X" * (len(identity) - 4) + identity[-4:]
