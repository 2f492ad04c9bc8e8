# parsing.py
# Lenient value parsers shared by the live API and the CSV importer.
# Every parser returns None for blank or malformed input and never raises.

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from errors import ValidationFailure

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d-%m-%Y", "%Y-%m-%d %H:%M:%S")
_TRUE = {"true", "yes", "y", "1"}
_FALSE = {"false", "no", "n", "0"}


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def parse_float(value: Any) -> Optional[float]:
    if _blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
    else:
        try:
            f = float(str(value).strip().replace(",", ""))
        except ValueError:
            return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def parse_int(value: Any) -> Optional[int]:
    # "3.7" -> 3, truncating like a leading-integer parse
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    f = parse_float(value)
    if f is None:
        return None
    return int(f)


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a date/datetime string to a naive UTC datetime."""
    if _blank(value):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            parsed = None
            for fmt in _DATE_FORMATS:
                try:
                    parsed = datetime.strptime(s, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if _blank(value):
        return None
    s = str(value).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    return None


def parse_list(value: Any) -> Optional[List[str]]:
    # Lists keep order and duplicates; strings are split on "|"
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    s = str(value).strip()
    if s == "":
        return []
    return [part.strip() for part in s.split("|") if part.strip()]


def parse_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


# Known Listing fields and the parser applied to each
LISTING_FIELDS = {
    "id": parse_str,
    "title": parse_str,
    "type": parse_str,
    "price": parse_float,
    "state": parse_str,
    "city": parse_str,
    "location": parse_str,
    "areaSqFt": parse_float,
    "bedrooms": parse_int,
    "bathrooms": parse_int,
    "amenities": parse_list,
    "furnished": parse_str,
    "availableFrom": parse_date,
    "listedBy": parse_str,
    "tags": parse_list,
    "colorTheme": parse_str,
    "rating": parse_float,
    "isVerified": parse_bool,
    "listingType": parse_str,
}


def coerce_listing(payload: Dict[str, Any], strict: bool = True) -> Dict[str, Any]:
    """
    Keep only known Listing fields and convert each to its stored type.

    With strict=True a supplied, non-blank value that fails to parse raises
    ValidationFailure. Otherwise it is stored as None.
    """
    doc: Dict[str, Any] = {}
    for field, parser in LISTING_FIELDS.items():
        if field not in payload:
            continue
        raw = payload[field]
        value = parser(raw)
        if value is None and strict and not _blank(raw):
            raise ValidationFailure(f"Invalid value for {field}")
        doc[field] = value
    return doc
