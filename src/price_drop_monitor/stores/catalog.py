from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

from .common import TitleParts, TitleRule, leading_brand, normalize_domain, parse_price_text


@dataclass(frozen=True)
class FieldLocators:
    name: str
    price: str
    sale_price: str | None = None
    sku: str | None = None
    images: str | None = None
    sizes: str | None = None
    in_stock: str | None = None


@dataclass(frozen=True)
class StoreRecipe:
    domain: str
    name: str
    store_id: str
    locators: FieldLocators
    price_normalizer: Callable[[str], float | None] = field(default=parse_price_text)
    title_rule: TitleRule = field(default=leading_brand)

    def split_title(self, title: str) -> TitleParts:
        return self.title_rule(title)


class StoreCatalog:
    """Retailer domain -> extraction recipe.

    Lookups strip a leading ``www.`` and fall back to parent domains, so
    ``m.example.com`` resolves to a recipe registered for ``example.com``.
    """

    def __init__(self, recipes: Iterable[StoreRecipe] = ()) -> None:
        self._recipes: dict[str, StoreRecipe] = {}
        for r in recipes:
            self.register(r)

    def register(self, recipe: StoreRecipe) -> None:
        self._recipes[normalize_domain(recipe.domain)] = recipe

    def lookup(self, domain: str) -> StoreRecipe | None:
        d = normalize_domain(domain)
        while d:
            recipe = self._recipes.get(d)
            if recipe is not None:
                return recipe
            _, sep, parent = d.partition(".")
            if not sep or "." not in parent:
                return None
            d = parent
        return None

    def domains(self) -> list[str]:
        return sorted(self._recipes)

    def __len__(self) -> int:
        return len(self._recipes)


def default_catalog() -> StoreCatalog:
    from .recipes import RECIPES

    return StoreCatalog(RECIPES)
