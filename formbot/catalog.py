"""
FORMBOT Fix Catalog

Data records flowing between analyzers, the generator and the patcher:

  Issue          — what an analyzer found (immutable)
  FixSuggestion  — a concrete, mechanically-applicable change for one Issue
  FileChange     — the outcome of applying one FixSuggestion

FixCatalog holds suggestions and decides which ones are eligible for
automated publication. It has no behavior beyond filtering.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------

class FixKind(str, Enum):
    """What the generator is asked to produce."""
    HTTP_CALL_IN_FUNCTION = "http-call-in-function"
    DOM_ACCESS_IN_FUNCTION = "dom-access-in-function"
    CSS_IMPORT = "css-import"
    CSS_BACKGROUND_IMAGE = "css-background-image"


class FixType(str, Enum):
    """Trivial fix types eligible for fully automated publication."""
    CSS_IMPORT = "css-import-fix"
    CSS_BACKGROUND_IMAGE = "css-background-image-fix"
    HTTP_IN_FUNCTION = "http-request-in-custom-function-fix"
    DOM_IN_FUNCTION = "dom-access-in-custom-function-fix"

    @classmethod
    def parse(cls, value: str) -> "FixType | None":
        try:
            return cls(value)
        except ValueError:
            return None


# analyzer issue type -> generator kind
ISSUE_KINDS: dict[str, FixKind] = {
    "css-import-blocking": FixKind.CSS_IMPORT,
    "css-background-image": FixKind.CSS_BACKGROUND_IMAGE,
    "http-request-in-custom-function": FixKind.HTTP_CALL_IN_FUNCTION,
    "dom-access-in-custom-function": FixKind.DOM_ACCESS_IN_FUNCTION,
}

# generator kind -> fix type the patcher understands
KIND_FIX_TYPES: dict[FixKind, FixType] = {
    FixKind.CSS_IMPORT: FixType.CSS_IMPORT,
    FixKind.CSS_BACKGROUND_IMAGE: FixType.CSS_BACKGROUND_IMAGE,
    FixKind.HTTP_CALL_IN_FUNCTION: FixType.HTTP_IN_FUNCTION,
    FixKind.DOM_ACCESS_IN_FUNCTION: FixType.DOM_IN_FUNCTION,
}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class Issue(BaseModel):
    """A finding produced by an external analyzer."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    type: str
    severity: str = "error"
    file: str = ""
    line: int | None = None
    field: str | None = None
    function_name: str | None = Field(default=None, alias="functionName")
    expression: str | None = None
    message: str = ""
    import_url: str | None = Field(default=None, alias="importUrl")
    image_url: str | None = Field(default=None, alias="imageUrl")
    selector: str | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        where = str(self.line) if self.line is not None else (self.field or "")
        return (self.type, self.file, where)

    @property
    def kind(self) -> FixKind | None:
        return ISSUE_KINDS.get(self.type)


class FixSuggestion(BaseModel):
    """A proposed change tied to one Issue."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    file: str = ""
    line: int | None = None
    original_code: str = Field(default="", alias="originalCode")
    fixed_code: str = Field(default="", alias="fixedCode")
    guidance: str = ""
    estimated_impact: str = Field(default="", alias="estimatedImpact")
    function_name: str | None = Field(default=None, alias="functionName")
    marker: str | None = None
    description: str = ""

    @property
    def fix_type(self) -> FixType | None:
        return FixType.parse(self.type)


class FileChange(BaseModel):
    """Result of applying one FixSuggestion."""
    file_path: str
    description: str = ""
    impact: str = ""
    success: bool = False
    error: str = ""


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class FixCatalog:
    """
    Holds suggestions from analyzers/generator and filters them down
    to the mechanically-fixable subset.
    """

    def __init__(
        self,
        suggestions: Iterable[FixSuggestion | dict] = (),
        enabled: Iterable[str] | None = None,
    ):
        self._enabled = (
            {t for t in (FixType.parse(e) for e in enabled) if t}
            if enabled is not None
            else set(FixType)
        )
        self._suggestions: list[FixSuggestion] = []
        for record in suggestions:
            suggestion = record if isinstance(record, FixSuggestion) else self._parse(record)
            if suggestion is not None:
                self._suggestions.append(suggestion)

    def _parse(self, record: dict) -> FixSuggestion | None:
        """Validate a raw record only when its type is one we would apply."""
        fix_type = FixType.parse(str(record.get("type", "")))
        if fix_type is None or fix_type not in self._enabled:
            logger.debug(f"[CATALOG] Ignoring record of type {record.get('type')!r}")
            return None
        try:
            return FixSuggestion.model_validate(record)
        except ValidationError as e:
            logger.warning(f"[CATALOG] Skipping malformed {fix_type.value} record: {e}")
            return None

    def __len__(self) -> int:
        return len(self._suggestions)

    def __iter__(self):
        return iter(self._suggestions)

    def add(self, suggestion: FixSuggestion) -> None:
        self._suggestions.append(suggestion)

    def by_type(self, fix_type: FixType) -> list[FixSuggestion]:
        return [s for s in self._suggestions if s.fix_type is fix_type]

    def eligible(self) -> list[FixSuggestion]:
        """
        Known, enabled fix types with a target file. At most one
        suggestion per file: the first one wins.
        """
        chosen: list[FixSuggestion] = []
        seen_files: set[str] = set()

        for suggestion in self._suggestions:
            fix_type = suggestion.fix_type
            if fix_type is None or fix_type not in self._enabled:
                continue
            if not suggestion.file:
                continue
            if suggestion.file in seen_files:
                logger.info(
                    f"[CATALOG] Deferring {suggestion.type} on {suggestion.file}: "
                    "one fix per file per run"
                )
                continue
            seen_files.add(suggestion.file)
            chosen.append(suggestion)

        return chosen
