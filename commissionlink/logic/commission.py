"""Category-based commission rate resolution."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from commissionlink.logic.rates import DEFAULT_RATE, RateTable, load_commission_rates

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Other"
UNCATEGORIZED = "Uncategorized"
ERROR_SUBCATEGORY = "Error"

LITERAL_SEPARATORS_RE = re.compile(r"[\s&]+")

# Synonyms used when no direct match exists, keyed by lower-cased table names.
KEYWORDS: dict[str, tuple[str, ...]] = {
    "phones & tablets": ("phone", "mobile", "smartphone", "tablet", "ipad", "iphone", "android"),
    "phones": ("phone", "mobile", "smartphone", "iphone", "android"),
    "accessories": ("case", "cover", "charger", "cable", "accessory", "screen protector"),
    "appliances": ("appliance", "refrigerator", "washing machine", "dryer", "dishwasher"),
    "electronics": ("electronic", "gadget", "device"),
    "computing & gaming": ("computer", "laptop", "desktop", "gaming", "console", "pc"),
    "cameras": ("camera", "photography", "lens", "dslr", "mirrorless"),
    "tv": ("television", "tv", "smart tv", "monitor", "display"),
    "audio": ("headphones", "speaker", "audio", "earbuds", "sound"),
    "fashion": ("clothing", "fashion", "apparel", "wear"),
    "men": ("men", "mens", "male", "gentleman"),
    "women": ("women", "womens", "female", "ladies"),
    "kids & babies": ("kids", "children", "baby", "infant", "toddler"),
    "shoes": ("shoes", "sneakers", "boots", "sandals", "footwear"),
    "beauty & health": ("beauty", "health", "cosmetics", "skincare"),
    "makeup": ("makeup", "cosmetics", "lipstick", "foundation"),
    "home & living": ("home", "house", "living", "household"),
    "furniture": ("furniture", "chair", "table", "bed", "sofa"),
    "sports & outdoors": ("sports", "outdoor", "fitness", "exercise"),
    "automotive": ("car", "auto", "vehicle", "automotive"),
    "groceries": ("food", "grocery", "snack", "beverage"),
    "books": ("book", "reading", "literature"),
    "toys & games": ("toy", "game", "play", "puzzle"),
    "pet supplies": ("pet", "dog", "cat", "animal"),
}


@dataclass(slots=True)
class CommissionResult:
    rate: float
    category: str
    subcategory: str
    is_default: bool
    price: float | None = None
    value: float | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "rate": self.rate,
            "category": self.category,
            "subcategory": self.subcategory,
            "isDefault": self.is_default,
        }
        if self.value is not None:
            data["price"] = self.price
            data["value"] = self.value
        return data


@dataclass(slots=True)
class CategoryEntry:
    category: str
    subcategory: str
    rate: float


def round_money(value: Decimal | float) -> float:
    """Round half-up to cents."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def commission_value(price: float, rate: float) -> float:
    return round_money(Decimal(str(price)) * Decimal(str(rate)) / Decimal(100))


def _to_float(value: Any) -> float:
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError):
        return 0.0
    if not number.is_finite():
        return 0.0
    return float(number)


def extract_price(product: Mapping[str, Any]) -> float:
    """Explicit ``price``, else the first variant's price, else 0."""
    if product.get("price"):
        return _to_float(product["price"])
    variants = product.get("variants") or []
    if isinstance(variants, Mapping):
        variants = [edge.get("node", {}) for edge in variants.get("edges", [])]
    if variants:
        first = variants[0]
        return _to_float(first.get("price") or 0) if isinstance(first, Mapping) else 0.0
    return 0.0


def _tags(product: Mapping[str, Any]) -> list[str]:
    tags = product.get("tags") or []
    if isinstance(tags, str):
        tags = tags.split(",")
    return [tag.lower().strip() for tag in tags]


def normalize_label(label: str) -> str:
    return LITERAL_SEPARATORS_RE.sub(" ", label.lower().strip())


class CommissionCalculator:
    def __init__(self, rates: RateTable | None = None, *, default_rate: float = DEFAULT_RATE) -> None:
        self.rates = rates if rates is not None else load_commission_rates()
        self.default_rate = default_rate

    def _pairs(self) -> Iterable[tuple[str, str, float]]:
        for category, subcategories in self.rates.items():
            for subcategory, rate in subcategories.items():
                yield category, subcategory, rate

    def _default(self, subcategory: str = UNCATEGORIZED) -> CommissionResult:
        return CommissionResult(
            rate=self.default_rate, category=DEFAULT_CATEGORY, subcategory=subcategory, is_default=True
        )

    def resolve_rate(self, product: Mapping[str, Any]) -> CommissionResult:
        try:
            match = self._match(product)
        except (AttributeError, TypeError) as exc:
            logger.warning("Malformed product for commission lookup: %s", exc)
            return self._default(ERROR_SUBCATEGORY)
        if match is None:
            return self._default()
        category, subcategory, rate = match
        return CommissionResult(rate=rate, category=category, subcategory=subcategory, is_default=False)

    def resolve_value(self, product: Mapping[str, Any], price: float | None = None) -> CommissionResult:
        result = self.resolve_rate(product)
        if price:
            amount = _to_float(price)
        else:
            try:
                amount = extract_price(product)
            except (AttributeError, TypeError):
                amount = 0.0
        result.price = amount
        result.value = commission_value(amount, result.rate)
        return result

    def _match(self, product: Mapping[str, Any]) -> tuple[str, str, float] | None:
        product_type = (product.get("productType") or product.get("product_type") or "").lower().strip()
        tags = _tags(product)
        title = (product.get("title") or "").lower().strip()
        vendor = (product.get("vendor") or "").lower().strip()

        for category, subcategory, rate in self._pairs():
            names = (category.lower(), subcategory.lower())
            if (
                _type_matches(product_type, names)
                or any(_type_matches(tag, names) for tag in tags)
                or any(name in title for name in names)
                or any(name in vendor for name in names)
            ):
                return category, subcategory, rate

        haystack = f"{product_type} {title} {' '.join(tags)}"
        for category, subcategory, rate in self._pairs():
            keywords = KEYWORDS.get(category.lower(), ()) + KEYWORDS.get(subcategory.lower(), ())
            if any(keyword in haystack for keyword in keywords):
                return category, subcategory, rate
        return None

    def lookup_category(self, label: str | None) -> CommissionResult:
        """Resolve a literal category label such as ``"Phones & Tablets"``."""
        wanted = normalize_label(label or "")
        if wanted:
            for category, subcategory, rate in self._pairs():
                if wanted in (normalize_label(category), normalize_label(subcategory)):
                    return CommissionResult(rate=rate, category=category, subcategory=subcategory, is_default=False)
        return self._default()

    def get_all_categories(self) -> list[CategoryEntry]:
        entries = [CategoryEntry(category, subcategory, rate) for category, subcategory, rate in self._pairs()]
        entries.append(CategoryEntry(DEFAULT_CATEGORY, UNCATEGORIZED, self.default_rate))
        return sorted(entries, key=lambda entry: entry.category.casefold())

    def get_commission_stats(self, products: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
        total_products = 0
        categorized = 0
        total_value = Decimal(0)
        total_rate = Decimal(0)
        breakdown: dict[str, dict[str, Any]] = defaultdict(lambda: {"count": 0, "total_value": 0.0, "rate": 0})
        for product in products:
            commission = self.resolve_value(product)
            total_products += 1
            if not commission.is_default:
                categorized += 1
            total_value += Decimal(str(commission.value))
            total_rate += Decimal(str(commission.rate))
            entry = breakdown[f"{commission.category} - {commission.subcategory}"]
            entry["count"] += 1
            entry["total_value"] = round_money(Decimal(str(entry["total_value"])) + Decimal(str(commission.value)))
            entry["rate"] = commission.rate
        return {
            "total_products": total_products,
            "categorized": categorized,
            "uncategorized": total_products - categorized,
            "total_commission_value": round_money(total_value),
            "average_rate": round_money(total_rate / total_products) if total_products else 0.0,
            "category_breakdown": dict(breakdown),
        }


def _type_matches(value: str, names: tuple[str, ...]) -> bool:
    return any(value == name or name in value for name in names)


_default_calculator: CommissionCalculator | None = None


def default_calculator() -> CommissionCalculator:
    global _default_calculator
    if _default_calculator is None:
        _default_calculator = CommissionCalculator()
    return _default_calculator


def resolve_rate(product: Mapping[str, Any]) -> CommissionResult:
    return default_calculator().resolve_rate(product)


def resolve_commission(product: Mapping[str, Any], price: float | None = None) -> CommissionResult:
    return default_calculator().resolve_value(product, price)


def get_all_categories() -> list[CategoryEntry]:
    return default_calculator().get_all_categories()


def get_commission_stats(products: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    return default_calculator().get_commission_stats(products)
