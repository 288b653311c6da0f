"""
Qualification criteria.

Each criterion kind is its own small class with typed parameters and an
evaluate() method; CRITERIA maps the configuration name to the class.
"""
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from leadmailer.errors import CriterionConfigError


@dataclass(frozen=True)
class SiteSignals:
    """The parts of a crawled site that criteria look at."""
    page_count: Optional[int] = None
    word_count: Optional[int] = None
    detected_platform: Optional[str] = None
    content: Optional[str] = None

    @classmethod
    def from_site(cls, site) -> "SiteSignals":
        return cls(
            page_count=site.page_count,
            word_count=site.word_count,
            detected_platform=site.detected_platform,
            content=site.content_snapshot,
        )


@dataclass
class CriterionResult:
    criterion: str
    matched: bool
    message: str
    required: Any = None
    actual: Any = None
    found: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "criterion": self.criterion,
            "matched": self.matched,
            "message": self.message,
            "required": self.required,
            "actual": self.actual,
            "found": self.found,
            "missing": self.missing,
        }


def to_int(name: str, value: Any) -> int:
    """
    Normalize a numeric parameter that may arrive as a string.

    Args:
        name: Criterion name, for error messages
        value: Raw parameter value

    Returns:
        Integer value

    Raises:
        CriterionConfigError: if the value is not a whole number
    """
    if isinstance(value, bool):
        raise CriterionConfigError(f"{name}: expected a number, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise CriterionConfigError(f"{name}: expected a number, got {value!r}")
            if number.is_integer():
                return int(number)
    raise CriterionConfigError(f"{name}: expected a whole number, got {value!r}")


def to_list(name: str, value: Any) -> List[str]:
    """
    Normalize a list parameter that may arrive JSON-encoded or as a single string.

    Args:
        name: Criterion name, for error messages
        value: Raw parameter value

    Returns:
        List of non-empty strings

    Raises:
        CriterionConfigError: if the value cannot be read as a list of strings
    """
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except ValueError:
                raise CriterionConfigError(f"{name}: invalid JSON list {value!r}")
        else:
            value = [text] if text else []
    if isinstance(value, (list, tuple)):
        items = []
        for item in value:
            if not isinstance(item, (str, int, float)) or isinstance(item, bool):
                raise CriterionConfigError(f"{name}: unsupported list item {item!r}")
            text = str(item).strip()
            if text:
                items.append(text)
        return items
    raise CriterionConfigError(f"{name}: expected a list, got {value!r}")


def _search(content: str, terms: List[str]) -> Tuple[List[str], List[str]]:
    lowered = content.lower()
    found = [term for term in terms if term.lower() in lowered]
    missing = [term for term in terms if term.lower() not in lowered]
    return found, missing


class Criterion:
    name: ClassVar[str] = ""

    @classmethod
    def from_params(cls, params: Any) -> "Criterion":
        raise NotImplementedError

    def evaluate(self, signals: SiteSignals) -> CriterionResult:
        raise NotImplementedError


@dataclass(frozen=True)
class MinPages(Criterion):
    name: ClassVar[str] = "min_pages"
    minimum: int

    @classmethod
    def from_params(cls, params):
        return cls(to_int(cls.name, params))

    def evaluate(self, signals):
        actual = signals.page_count or 0
        matched = actual >= self.minimum
        message = (f"Website has {actual} pages (required: {self.minimum}+)" if matched
                   else f"Website has only {actual} pages (required: {self.minimum}+)")
        return CriterionResult(self.name, matched, message, self.minimum, actual)


@dataclass(frozen=True)
class MaxPages(Criterion):
    name: ClassVar[str] = "max_pages"
    maximum: int

    @classmethod
    def from_params(cls, params):
        return cls(to_int(cls.name, params))

    def evaluate(self, signals):
        actual = signals.page_count or 0
        matched = actual <= self.maximum
        message = (f"Website has {actual} pages (limit: {self.maximum})" if matched
                   else f"Website has {actual} pages (exceeds limit: {self.maximum})")
        return CriterionResult(self.name, matched, message, self.maximum, actual)


@dataclass(frozen=True)
class Platforms(Criterion):
    name: ClassVar[str] = "platforms"
    allowed: Tuple[str, ...]

    @classmethod
    def from_params(cls, params):
        return cls(tuple(to_list(cls.name, params)))

    def evaluate(self, signals):
        actual = signals.detected_platform
        allowed = {platform.lower() for platform in self.allowed}
        matched = bool(actual) and actual.lower() in allowed
        message = (f"Platform '{actual}' is allowed" if matched
                   else f"Platform '{actual}' not in allowed list: {', '.join(self.allowed)}")
        return CriterionResult(self.name, matched, message, list(self.allowed), actual)


@dataclass(frozen=True)
class MinWordCount(Criterion):
    name: ClassVar[str] = "min_word_count"
    minimum: int

    @classmethod
    def from_params(cls, params):
        return cls(to_int(cls.name, params))

    def evaluate(self, signals):
        actual = signals.word_count or 0
        matched = actual >= self.minimum
        message = (f"Content has {actual} words (required: {self.minimum}+)" if matched
                   else f"Content has only {actual} words (required: {self.minimum}+)")
        return CriterionResult(self.name, matched, message, self.minimum, actual)


@dataclass(frozen=True)
class MaxWordCount(Criterion):
    name: ClassVar[str] = "max_word_count"
    maximum: int

    @classmethod
    def from_params(cls, params):
        return cls(to_int(cls.name, params))

    def evaluate(self, signals):
        actual = signals.word_count or 0
        matched = actual <= self.maximum
        message = (f"Content has {actual} words (limit: {self.maximum})" if matched
                   else f"Content has {actual} words (exceeds limit: {self.maximum})")
        return CriterionResult(self.name, matched, message, self.maximum, actual)


@dataclass(frozen=True)
class RequiredKeywords(Criterion):
    name: ClassVar[str] = "required_keywords"
    keywords: Tuple[str, ...]

    @classmethod
    def from_params(cls, params):
        return cls(tuple(to_list(cls.name, params)))

    def evaluate(self, signals):
        if not signals.content:
            return CriterionResult(self.name, False, "No content available to search for keywords",
                                   list(self.keywords), missing=list(self.keywords))
        found, missing = _search(signals.content, list(self.keywords))
        matched = not missing
        message = (f"All required keywords found: {', '.join(found)}" if matched
                   else f"Missing keywords: {', '.join(missing)}")
        return CriterionResult(self.name, matched, message, list(self.keywords), found=found, missing=missing)


@dataclass(frozen=True)
class ExcludedKeywords(Criterion):
    name: ClassVar[str] = "excluded_keywords"
    keywords: Tuple[str, ...]

    @classmethod
    def from_params(cls, params):
        return cls(tuple(to_list(cls.name, params)))

    def evaluate(self, signals):
        if not signals.content:
            return CriterionResult(self.name, True, "No excluded keywords found", list(self.keywords))
        found, _ = _search(signals.content, list(self.keywords))
        matched = not found
        message = ("No excluded keywords found" if matched
                   else f"Found excluded keywords: {', '.join(found)}")
        return CriterionResult(self.name, matched, message, list(self.keywords), found=found)


@dataclass(frozen=True)
class RequiredUrls(Criterion):
    name: ClassVar[str] = "required_urls"
    patterns: Tuple[str, ...]

    @classmethod
    def from_params(cls, params):
        return cls(tuple(to_list(cls.name, params)))

    def evaluate(self, signals):
        if not signals.content:
            return CriterionResult(self.name, False, "No content available to search for URLs",
                                   list(self.patterns), missing=list(self.patterns))
        found, missing = _search(signals.content, list(self.patterns))
        matched = not missing
        message = (f"All required URLs found: {', '.join(found)}" if matched
                   else f"Missing URLs: {', '.join(missing)}")
        return CriterionResult(self.name, matched, message, list(self.patterns), found=found, missing=missing)


CRITERIA: Dict[str, type] = {
    criterion.name: criterion
    for criterion in (MinPages, MaxPages, Platforms, MinWordCount, MaxWordCount,
                      RequiredKeywords, ExcludedKeywords, RequiredUrls)
}

# Older rule configurations used the singular key
ALIASES = {"platform": "platforms"}


def is_unset(params: Any) -> bool:
    """A key stored without a value (null or blank) counts as not configured."""
    return params is None or (isinstance(params, str) and not params.strip())


def build_criterion(name: str, params: Any) -> Optional[Criterion]:
    """
    Build a criterion from its configuration name and raw parameters.

    Args:
        name: Criterion name, e.g. 'min_pages'
        params: Raw parameters

    Returns:
        Criterion instance, or None if the name is not a known criterion

    Raises:
        CriterionConfigError: if the parameters cannot be normalized
    """
    criterion_class = CRITERIA.get(ALIASES.get(name, name))
    if criterion_class is None:
        return None
    return criterion_class.from_params(params)
