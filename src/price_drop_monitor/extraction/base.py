from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from urllib.parse import urlparse

from ..models import ExtractionResult
from ..stores.catalog import StoreRecipe
from ..stores.common import normalize_domain


STRUCTURED_TAG = "structured-endpoint"
LOCATOR_TAG = "store-locators"
ASSISTED_TAG = "ai-assisted"
NONE_TAG = "none"


@dataclass
class ExtractionContext:
    """Per-URL scratch state shared by the strategies of one chain run."""

    url: str
    domain: str
    recipe: StoreRecipe | None = None
    page_html: str | None = None
    page_status: int | None = None
    locator_parse_failed: bool = False
    structured_failed: bool = False
    errors: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def for_url(cls, url: str, recipe: StoreRecipe | None = None) -> "ExtractionContext":
        return cls(url=url, domain=normalize_domain(urlparse(url).netloc), recipe=recipe)

    def record_failure(self, tag: str, error: str) -> None:
        self.errors.append((tag, error))

    def joined_errors(self) -> str:
        return "; ".join(f"{tag}: {err}" for tag, err in self.errors)


class Strategy(ABC):
    tag: str = NONE_TAG

    @abstractmethod
    def applies(self, ctx: ExtractionContext) -> bool:
        raise NotImplementedError

    @abstractmethod
    def attempt(self, ctx: ExtractionContext) -> ExtractionResult:
        raise NotImplementedError

    def fail(self, error: str) -> ExtractionResult:
        return ExtractionResult.failure(self.tag, error)
