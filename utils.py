import re
import logging
from datetime import datetime, date, timezone
from typing import Optional

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database columns store"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def validate_email(email: str) -> bool:
    """Validate email address format"""
    if not email:
        return False

    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


def validate_phone(phone: str) -> bool:
    """Validate phone number format"""
    if not phone:
        return False

    # Remove spaces, dashes, parentheses
    clean_phone = re.sub(r'[\s\-\(\)\.]', '', phone)

    # Check if it's a valid international format
    pattern = r'^\+?[\d]{10,15}$'
    return bool(re.match(pattern, clean_phone))


def parse_datetime(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into naive UTC.

    Returns None when the value is missing or malformed.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.debug("Unparseable datetime: %r", value)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_date(value: str) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def isoformat(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat() + 'Z' if value.tzinfo is None else value.isoformat()
    return value.isoformat()


def parse_int(value, default: Optional[int] = None) -> Optional[int]:
    """Lenient int parsing for JSON bodies that send numbers as strings"""
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    return int(value)


def get_pagination(args, default_limit: int = 20, max_limit: int = 100):
    """Read ``page``/``limit`` query args and clamp them to sane bounds"""
    page = args.get('page', 1, type=int) or 1
    limit = args.get('limit', default_limit, type=int) or default_limit
    return max(page, 1), min(max(limit, 1), max_limit)


def pagination_payload(page: int, limit: int, total: int) -> dict:
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': max((total + limit - 1) // limit, 1),
    }
