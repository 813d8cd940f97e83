"""Category keyword policy for retailer search results."""

import logging
import re
from typing import Iterable, List, Optional

from dropwatch.config import settings

logger = logging.getLogger(__name__)


def _parse_csv_values(value: Optional[str]) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip().lower() for v in value if str(v).strip()]
    return [part.strip().lower() for part in str(value).split(",") if part.strip()]


def _compile(keywords: Iterable[str]) -> List[re.Pattern]:
    return [
        re.compile(r"\b" + re.escape(keyword) + r"s?\b", re.IGNORECASE)
        for keyword in keywords
    ]


class CategoryFilter:
    """Keeps a product when it matches an inclusion term and no exclusion term."""

    def __init__(self, include: Optional[Iterable[str]] = None, exclude: Optional[Iterable[str]] = None):
        include = _parse_csv_values(settings.category_include_keywords) if include is None else list(include)
        exclude = _parse_csv_values(settings.category_exclude_keywords) if exclude is None else list(exclude)
        self._include = _compile(include)
        self._exclude = _compile(exclude)

    def matches(self, name: str, additional_text: str = "") -> bool:
        text = f"{name} {additional_text}"
        if not any(p.search(text) for p in self._include):
            return False
        return not any(p.search(text) for p in self._exclude)


category_filter = CategoryFilter()


def is_in_category(name: str, additional_text: str = "") -> bool:
    """Return True if the product name passes the category policy."""
    return category_filter.matches(name, additional_text)
