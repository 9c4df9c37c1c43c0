from __future__ import annotations

from typing import Any

# Fixed vocabulary. Doubles as the default key set for persisted totals.
BASE_COUNTRIES: tuple[str, ...] = (
    "United States",
    "India",
    "China",
    "Japan",
    "Germany",
    "United Kingdom",
    "France",
    "Italy",
    "Canada",
    "Australia",
    "Brazil",
    "Mexico",
    "Spain",
    "Netherlands",
    "Turkey",
    "South Korea",
    "Indonesia",
    "Saudi Arabia",
    "United Arab Emirates",
    "Israel",
    "Sweden",
    "Switzerland",
    "Poland",
    "Ukraine",
    "Russia",
    "Argentina",
    "Colombia",
    "South Africa",
    "Nigeria",
    "Egypt",
    "Vietnam",
    "Thailand",
    "Malaysia",
    "Singapore",
    "Philippines",
    "Kazakhstan",
    "Norway",
    "Denmark",
    "Ireland",
    "Austria",
)

# Keys are upper-cased donor input.
COUNTRY_ALIASES: dict[str, str] = {
    "USA": "United States",
    "US": "United States",
    "U.S.": "United States",
    "UK": "United Kingdom",
    "UAE": "United Arab Emirates",
    "KOREA": "South Korea",
    "SOUTH KOREA": "South Korea",
    "RUSSIA": "Russia",
    "CHINA": "China",
    "INDIA": "India",
}


class CountryVocabulary:
    """Closed set of canonical country names with alias resolution."""

    def __init__(
        self,
        countries: tuple[str, ...] = BASE_COUNTRIES,
        aliases: dict[str, str] | None = None,
    ) -> None:
        self._countries = countries
        self._country_set = frozenset(countries)
        self._aliases = dict(COUNTRY_ALIASES if aliases is None else aliases)
        self._by_lower = {c.lower(): c for c in countries}

    @property
    def countries(self) -> tuple[str, ...]:
        return self._countries

    def is_canonical(self, name: str) -> bool:
        return name in self._country_set

    def normalize(self, raw: Any) -> str | None:
        """Resolve donor text to a canonical country, or ``None``.

        Resolution order, first hit wins: exact name, alias table (upper-cased
        input), title variant (short inputs fully upper-cased), then a
        case-insensitive scan.
        """
        if not raw or not isinstance(raw, str):
            return None
        text = raw.strip()
        if not text:
            return None
        if text in self._country_set:
            return text

        alias = self._aliases.get(text.upper())
        if alias is not None:
            return alias

        title = text.upper() if len(text) < 3 else text[0].upper() + text[1:]
        if title in self._country_set:
            return title

        return self._by_lower.get(text.lower())


DEFAULT_VOCABULARY = CountryVocabulary()


def normalize_country(raw: Any) -> str | None:
    return DEFAULT_VOCABULARY.normalize(raw)
