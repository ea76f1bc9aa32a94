"""
Keyword translation for diagnostic search.

Maps free-text complaints (Indonesian colloquialisms included) to the technical
keywords stored in the knowledge base. The synonym table is static configuration
loaded once from keyword_mappings.yaml.

Known imprecision: trigger phrases are matched as substrings of the whole query,
so a short trigger like "ac" or "per" also fires inside unrelated words
("tracking", "superchip").
"""
import logging
import os
import re
from types import MappingProxyType
from typing import Iterable, Iterator, List, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

SERVICES_DIR = os.path.dirname(os.path.abspath(__file__))
MAPPINGS_FILE = "keyword_mappings.yaml"

# Tokens of this length or shorter carry too little signal to search on
MIN_TOKEN_LENGTH = 3
DISPLAY_LIMIT = 10

# P (powertrain), B (body), C (chassis), U (network) followed by four digits
DTC_PATTERN = re.compile(r"[pbcu][0-9]{4}", re.IGNORECASE)


class KeywordSet:
    """Deduplicated keywords with stable (first-seen) iteration order."""

    def __init__(self, keywords: Optional[Iterable[str]] = None):
        self._items = dict.fromkeys(keywords or ())

    def add(self, keyword: str) -> None:
        self._items.setdefault(keyword, None)

    def update(self, keywords: Iterable[str]) -> None:
        for keyword in keywords:
            self.add(keyword)

    def to_list(self) -> List[str]:
        return list(self._items)

    def preview(self, limit: int = DISPLAY_LIMIT) -> List[str]:
        """First keywords for display."""
        return self.to_list()[:limit]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, keyword: object) -> bool:
        return keyword in self._items

    def __eq__(self, other: object) -> bool:
        if isinstance(other, KeywordSet):
            return set(self._items) == set(other._items)
        if isinstance(other, (set, frozenset)):
            return set(self._items) == other
        return NotImplemented

    def __repr__(self) -> str:
        return f"KeywordSet({self.to_list()!r})"


def load_keyword_mappings(filename: str = MAPPINGS_FILE) -> Mapping[str, Tuple[str, ...]]:
    """Load the synonym table and freeze it."""
    filepath = os.path.join(SERVICES_DIR, filename)
    try:
        with open(filepath, "r", encoding="utf-8") as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise ValueError(f"Configuration file not found: {filename}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {filename}: {str(e)}")

    if not isinstance(config, dict) or not isinstance(config.get("mappings"), dict):
        raise ValueError(f"Missing required key 'mappings' in {filename}")

    mappings = {}
    for trigger, expansions in config["mappings"].items():
        if not isinstance(expansions, list):
            raise ValueError(f"Mapping for '{trigger}' in {filename} must be a list")
        mappings[str(trigger).lower()] = tuple(str(value) for value in expansions)

    logger.info("Loaded %d keyword mappings from %s", len(mappings), filename)
    return MappingProxyType(mappings)


KEYWORD_MAPPINGS = load_keyword_mappings()


def tokenize(text: str) -> List[str]:
    """Lowercase, split on whitespace and drop short tokens, keeping order and duplicates."""
    return [word for word in text.lower().split() if len(word) >= MIN_TOKEN_LENGTH]


def unique_tokens(text: str) -> List[str]:
    """Tokens of ``text`` without duplicates, in first-seen order."""
    return list(dict.fromkeys(tokenize(text)))


def extract_dtc_codes(text: str) -> List[str]:
    """Every diagnostic trouble code in ``text``, uppercased."""
    return [match.upper() for match in DTC_PATTERN.findall(text)]


def translate(natural_query: str, mappings: Mapping[str, Tuple[str, ...]] = KEYWORD_MAPPINGS) -> KeywordSet:
    """
    Translate a natural-language query into search keywords.

    Args:
        natural_query: Free text typed by the technician, possibly empty
        mappings: Synonym table (trigger phrase -> expansion keywords)

    Returns:
        KeywordSet with the raw tokens, every expansion whose trigger occurs in
        the query, and any DTC found (uppercased)
    """
    query = (natural_query or "").lower()
    keywords = KeywordSet(tokenize(query))

    for trigger, expansions in mappings.items():
        if trigger in query:
            keywords.update(value.lower() for value in expansions)

    keywords.update(extract_dtc_codes(query))
    return keywords
