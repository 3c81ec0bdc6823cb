from .models import ExtractedItem, SearchOutcome, PLACEHOLDER_PREFIX  # noqa: F401
from .result import Found, Absent, Result  # noqa: F401
