"""Input validation helpers.

Every helper either returns the cleaned value or raises
:class:`ValidationError` with a message that can be shown to the user.
"""

import re
from urllib.parse import unquote

UUID_RE = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.I
)
PROJECT_CODE_RE = re.compile(r'^\d{4}-\d{3}$')
AREA_CODE_RE = re.compile(r'^[A-Za-z0-9_-]{1,20}$')

MAX_SEARCH_LENGTH = 200
MAX_FILENAME_LENGTH = 200

VERSION_STATUSES = ('draft', 'submitted', 'approved', 'archived')
PROJECT_STATUSES = ('draft', 'quotation', 'approved', 'in_progress', 'completed', 'cancelled', 'on_hold')
PRIORITIES = ('low', 'medium', 'high', 'urgent')
SORT_ORDERS = ('asc', 'desc')


class ValidationError(ValueError):
    pass


def validate_uuid(value, label: str = 'ID') -> str:
    if not value or not isinstance(value, str) or not UUID_RE.match(value.strip()):
        raise ValidationError(f"Invalid {label} format")
    return value.strip().lower()


def validate_project_code(value) -> str:
    if not value or not PROJECT_CODE_RE.match(str(value).strip()):
        raise ValidationError("Project code must match YYMM-NNN")
    return str(value).strip()


def validate_area_code(value) -> str:
    code = (value or '').strip()
    if not AREA_CODE_RE.match(code):
        raise ValidationError(
            "Area code must be 1-20 characters: letters, digits, '-' or '_'"
        )
    return code.upper()


def validate_search_query(value) -> str:
    q = (value or '').strip()
    if len(q) > MAX_SEARCH_LENGTH:
        raise ValidationError(f"Search query too long (max {MAX_SEARCH_LENGTH} characters)")
    return q


def validate_customer_id(value) -> str:
    cid = str(value or '').strip()
    if cid.isdigit() or UUID_RE.match(cid):
        return cid
    raise ValidationError("Invalid customer ID format")


def validate_quantity(value) -> int:
    try:
        qty = int(value)
    except (TypeError, ValueError):
        raise ValidationError("Quantity must be a whole number")
    if qty < 1:
        raise ValidationError("Quantity must be at least 1")
    return qty


def validate_discount(value) -> float:
    try:
        discount = float(value or 0)
    except (TypeError, ValueError):
        raise ValidationError("Discount must be a number")
    if not 0 <= discount <= 100:
        raise ValidationError("Discount must be between 0 and 100")
    return discount


def validate_price(value):
    if value is None or value == '':
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Price must be a number")
    if price < 0:
        raise ValidationError("Price cannot be negative")
    return price


def validate_choice(value, choices, label: str) -> str:
    if value not in choices:
        raise ValidationError(f"Invalid {label}: {value}")
    return value


def validate_page(page, page_size, max_page_size: int = 100) -> tuple[int, int]:
    try:
        page = max(int(page or 1), 1)
        page_size = int(page_size or 20)
    except (TypeError, ValueError):
        raise ValidationError("Invalid pagination parameters")
    return page, min(max(page_size, 1), max_page_size)


def sanitize_file_name(filename: str) -> str:
    """Reduce an uploaded file name to a safe object/file name."""
    decoded = filename or ''
    prev = None
    while prev != decoded:
        prev = decoded
        decoded = unquote(decoded)

    base = re.split(r'[/\\]', decoded)[-1] or decoded
    name = base.replace('..', '').replace('./', '').replace('.\\', '')
    name = re.sub(r'[^a-zA-Z0-9\s.\-_()]', '_', name)
    name = re.sub(r'\s+', '_', name)
    name = re.sub(r'_+', '_', name)
    name = name.lstrip('.')
    if not name or name == '_':
        name = 'upload'

    if len(name) > MAX_FILENAME_LENGTH:
        m = re.search(r'\.[a-zA-Z0-9]+$', name)
        ext = m.group(0) if m else ''
        name = name[:MAX_FILENAME_LENGTH - len(ext)] + ext
    return name
