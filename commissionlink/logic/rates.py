"""Static commission rate table."""

from __future__ import annotations

import pathlib
from types import MappingProxyType
from typing import Mapping

import yaml

RATES_PATH = pathlib.Path(__file__).with_name("commission_rates.yml")
DEFAULT_RATE = 15

RateTable = Mapping[str, Mapping[str, int]]


def load_commission_rates(path: pathlib.Path = RATES_PATH) -> RateTable:
    """Load the category -> subcategory -> rate table as a read-only mapping."""
    data = yaml.safe_load(path.read_text()) or {}
    return freeze_rates(data)


def freeze_rates(data: Mapping[str, Mapping[str, int]]) -> RateTable:
    table: dict[str, Mapping[str, int]] = {}
    for category, subcategories in data.items():
        if not isinstance(subcategories, Mapping):
            raise ValueError(f"Category {category!r} must map subcategories to rates")
        rates: dict[str, int] = {}
        for subcategory, rate in subcategories.items():
            if not isinstance(rate, (int, float)) or not 0 <= rate <= 100:
                raise ValueError(f"Invalid rate {rate!r} for {category} / {subcategory}")
            rates[str(subcategory)] = rate
        table[str(category)] = MappingProxyType(rates)
    return MappingProxyType(table)
