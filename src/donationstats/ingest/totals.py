from __future__ import annotations

from collections.abc import Iterator, Mapping
from decimal import ROUND_HALF_UP, Context, Decimal
import math
from numbers import Real
from typing import Any

from loguru import logger

from donationstats.countries.core import BASE_COUNTRIES

_PRECISION = Decimal("0.000001")
# Wide enough for any finite float at 6 dp.
_CONTEXT = Context(prec=400)


class CorrectionError(ValueError):
    """An admin correction was rejected and not applied."""


class InvalidAmountError(CorrectionError):
    """Absolute amount is not a finite, non-negative number."""


class InvalidDeltaError(CorrectionError):
    """Delta is not a finite number."""


class UnknownCountryError(CorrectionError):
    """Country text does not resolve to a canonical country."""


def quantize(value: float) -> float:
    """Round to 6 decimal places, half-up, via the shortest decimal repr."""
    exact = Decimal(repr(float(value)))
    return float(exact.quantize(_PRECISION, ROUND_HALF_UP, context=_CONTEXT))


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, Real):
        return False
    return math.isfinite(value)


def validate_amount(amount: Any) -> float:
    if not _is_finite_number(amount) or amount < 0:
        raise InvalidAmountError(
            f"Amount must be a finite non-negative number, got {amount!r}"
        )
    return float(amount)


def validate_delta(delta: Any) -> float:
    if not _is_finite_number(delta):
        raise InvalidDeltaError(f"Delta must be a finite number, got {delta!r}")
    return float(delta)


class CountryTotals(Mapping[str, float]):
    """Per-country cumulative totals in TON.

    Values are kept at 6 decimal places and never drop below zero.
    """

    def __init__(
        self,
        values: Mapping[str, float] | None = None,
        *,
        countries: tuple[str, ...] = BASE_COUNTRIES,
    ) -> None:
        self._countries = countries
        self._values: dict[str, float] = dict(values or {})

    @classmethod
    def from_raw(
        cls, raw: Any, *, countries: tuple[str, ...] = BASE_COUNTRIES
    ) -> CountryTotals:
        """Build from persisted JSON, dropping entries that are not usable."""
        values: dict[str, float] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                if not isinstance(key, str) or not key:
                    continue
                if not _is_finite_number(value) or value < 0:
                    logger.bind(country=key, value=value).warning(
                        "Ignoring persisted total for {}: {!r}", key, value
                    )
                    continue
                values[key] = quantize(value)
        elif raw is not None:
            logger.warning("Persisted totals are not an object, starting empty")
        totals = cls(values, countries=countries)
        totals.ensure_defaults()
        return totals

    def __getitem__(self, country: str) -> float:
        return self._values[country]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def add(self, country: str | None, amount: Any) -> None:
        if not country or not _is_finite_number(amount) or amount <= 0:
            return
        self._values[country] = quantize(self._values.get(country, 0.0) + amount)

    def set_absolute(self, country: str, amount: Any) -> float:
        self._values[country] = quantize(validate_amount(amount))
        return self._values[country]

    def add_delta(self, country: str, delta: Any) -> float:
        updated = quantize(self._values.get(country, 0.0) + validate_delta(delta))
        self._values[country] = max(updated, 0.0)
        return self._values[country]

    def ensure_defaults(self) -> None:
        for country in self._countries:
            self._values.setdefault(country, 0.0)

    def snapshot(self) -> dict[str, float]:
        self.ensure_defaults()
        return dict(self._values)

    def top(self, n: int = 5) -> list[tuple[str, float]]:
        ranked = sorted(self._values.items(), key=lambda kv: kv[1], reverse=True)
        return ranked[:n]
