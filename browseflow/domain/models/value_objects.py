"""
Value Objects for the workflow execution engine.

Immutable, self-validating primitives used throughout the domain:
- Confidence: 0-100 score
- Duration / Timeout: millisecond spans
- RetryPolicy: bounded retry budget with backoff
- Url / Viewport / ElementSelector: web primitives
- Priority / Intent: task classification
- Variable: name/value/secret triple with redaction
- Evidence: typed artifact supporting a claimed outcome

Design Decisions:
- frozen dataclasses, so equality is structural and instances are hashable
- factories (`create`, `from_*`) validate and raise ValidationError
- derived values are returned as new instances, never mutated in place
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse, urlunparse
import re

from browseflow.domain.exceptions import ValidationError


# ═══════════════════════════════════════════════════════════════════════════════
# Confidence
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Confidence:
    """Confidence score on a 0-100 scale (rounded to an integer)."""
    value: int = 0

    @classmethod
    def create(cls, value: float) -> "Confidence":
        if value is None or value != value:  # NaN check
            raise ValidationError("Confidence must be a finite number")
        if value < 0 or value > 100:
            raise ValidationError(f"Confidence must be between 0 and 100, got {value}")
        return cls(int(round(value)))

    @classmethod
    def clamp(cls, value: float) -> "Confidence":
        """Build a confidence, clamping out-of-range input instead of raising."""
        return cls(int(round(max(0.0, min(100.0, value)))))

    @classmethod
    def high(cls) -> "Confidence":
        return cls(90)

    @classmethod
    def medium(cls) -> "Confidence":
        return cls(70)

    @classmethod
    def low(cls) -> "Confidence":
        return cls(30)

    def is_high(self) -> bool:
        return self.value >= 80

    def is_medium(self) -> bool:
        return 50 <= self.value < 80

    def is_low(self) -> bool:
        return self.value < 50

    def meets_threshold(self, threshold: float) -> bool:
        return self.value >= threshold

    def combine(self, other: "Confidence", weight: float = 0.5) -> "Confidence":
        """Weighted blend: `weight` of self, the rest of other."""
        if weight < 0 or weight > 1:
            raise ValidationError("Weight must be between 0 and 1")
        return Confidence.create(self.value * weight + other.value * (1 - weight))

    def as_ratio(self) -> float:
        return self.value / 100.0

    def __str__(self) -> str:
        return f"{self.value}%"


# ═══════════════════════════════════════════════════════════════════════════════
# Duration / Timeout
# ═══════════════════════════════════════════════════════════════════════════════


_DURATION_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h|d)$")
_UNIT_MS = {"ms": 1, "s": 1000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}


@dataclass(frozen=True, order=True)
class Duration:
    """Non-negative span of time in whole milliseconds."""
    milliseconds: int = 0

    @classmethod
    def from_milliseconds(cls, ms: float) -> "Duration":
        if ms < 0:
            raise ValidationError("Duration cannot be negative")
        return cls(int(round(ms)))

    @classmethod
    def from_seconds(cls, seconds: float) -> "Duration":
        return cls.from_milliseconds(seconds * 1000)

    @classmethod
    def from_minutes(cls, minutes: float) -> "Duration":
        return cls.from_milliseconds(minutes * 60_000)

    @classmethod
    def between(cls, start: datetime, end: datetime) -> "Duration":
        return cls.from_milliseconds(abs((end - start).total_seconds()) * 1000)

    @classmethod
    def parse(cls, text: str) -> "Duration":
        """Parse strings like "500ms", "5s", "2m", "1h", "3d"."""
        match = _DURATION_PATTERN.match(text.strip())
        if not match:
            raise ValidationError(
                f'Invalid duration format "{text}". Use a form like "5s", "2m", "1h"'
            )
        return cls.from_milliseconds(float(match.group(1)) * _UNIT_MS[match.group(2)])

    @property
    def seconds(self) -> float:
        return self.milliseconds / 1000.0

    def is_zero(self) -> bool:
        return self.milliseconds == 0

    def add(self, other: "Duration") -> "Duration":
        return Duration(self.milliseconds + other.milliseconds)

    def multiply(self, factor: float) -> "Duration":
        if factor < 0:
            raise ValidationError("Duration factor cannot be negative")
        return Duration.from_milliseconds(self.milliseconds * factor)

    def to_short_string(self) -> str:
        ms = self.milliseconds
        if ms == 0:
            return "0ms"
        if ms >= 86_400_000:
            return f"{ms / 86_400_000:.1f}d"
        if ms >= 3_600_000:
            return f"{ms / 3_600_000:.1f}h"
        if ms >= 60_000:
            return f"{ms / 60_000:.1f}m"
        if ms >= 1000:
            return f"{ms / 1000:.1f}s"
        return f"{ms}ms"

    def __str__(self) -> str:
        return self.to_short_string()


class TimeoutType(Enum):
    PAGE_LOAD = "page-load"
    ELEMENT_WAIT = "element-wait"
    ACTION = "action"
    SCRIPT = "script"
    NETWORK = "network"


_MAX_TIMEOUT_MS = 3_600_000


@dataclass(frozen=True)
class Timeout:
    """A bounded, non-zero wait budget (at most one hour)."""
    duration: Duration
    type: TimeoutType = TimeoutType.ACTION
    description: Optional[str] = None

    @classmethod
    def create(
        cls,
        duration: Duration,
        type: TimeoutType = TimeoutType.ACTION,
        description: Optional[str] = None,
    ) -> "Timeout":
        if duration.is_zero():
            raise ValidationError("Timeout duration cannot be zero")
        if duration.milliseconds > _MAX_TIMEOUT_MS:
            raise ValidationError("Timeout duration cannot exceed 1 hour")
        return cls(duration, type, description)

    @classmethod
    def from_milliseconds(cls, ms: float, type: TimeoutType = TimeoutType.ACTION) -> "Timeout":
        return cls.create(Duration.from_milliseconds(ms), type)

    @classmethod
    def task_default(cls) -> "Timeout":
        """Default per-task budget (30s)."""
        return cls(Duration(30_000), TimeoutType.ACTION, "Standard task timeout")

    @classmethod
    def page_load(cls) -> "Timeout":
        return cls(Duration(30_000), TimeoutType.PAGE_LOAD, "Standard page load timeout")

    @classmethod
    def element_wait(cls) -> "Timeout":
        return cls(Duration(10_000), TimeoutType.ELEMENT_WAIT, "Standard element wait timeout")

    @property
    def milliseconds(self) -> int:
        return self.duration.milliseconds

    @property
    def seconds(self) -> float:
        return self.duration.seconds

    def extend(self, extra: Duration) -> "Timeout":
        return Timeout.create(self.duration.add(extra), self.type, self.description)


# ═══════════════════════════════════════════════════════════════════════════════
# RetryPolicy
# ═══════════════════════════════════════════════════════════════════════════════


class BackoffStrategy(Enum):
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


_MAX_RETRY_LIMIT = 10


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry budget with a backoff schedule.

    `attempt` numbers passed to the delay calculation are 1-based retry
    numbers: the first retry waits `base_delay`.
    """
    max_retries: int = 3
    base_delay: Duration = field(default_factory=lambda: Duration(1000))
    max_delay: Duration = field(default_factory=lambda: Duration(10_000))
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValidationError("Max retries cannot be negative")
        if self.max_retries > _MAX_RETRY_LIMIT:
            raise ValidationError(f"Max retries cannot exceed {_MAX_RETRY_LIMIT}")
        if self.base_delay > self.max_delay:
            raise ValidationError("Base delay cannot be longer than max delay")
        if self.backoff_strategy == BackoffStrategy.EXPONENTIAL and self.backoff_multiplier <= 1:
            raise ValidationError("Backoff multiplier must be greater than 1")

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(0, Duration(0), Duration(0), BackoffStrategy.FIXED, 1.0)

    @classmethod
    def immediate(cls, max_retries: int = 3) -> "RetryPolicy":
        return cls(max_retries, Duration(0), Duration(0), BackoffStrategy.FIXED, 1.0)

    @classmethod
    def exponential(
        cls,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 10_000,
    ) -> "RetryPolicy":
        """min(base * 2^(n-1), max): the orchestrator's task backoff."""
        if base_delay_ms == 0:
            return cls.immediate(max_retries)
        return cls(
            max_retries,
            Duration.from_milliseconds(base_delay_ms),
            Duration.from_milliseconds(max_delay_ms),
            BackoffStrategy.EXPONENTIAL,
            2.0,
        )

    def get_delay_for_attempt(self, attempt: int) -> Duration:
        if attempt <= 0:
            return Duration(0)
        if self.backoff_strategy == BackoffStrategy.FIXED:
            delay = self.base_delay
        elif self.backoff_strategy == BackoffStrategy.LINEAR:
            delay = self.base_delay.multiply(attempt)
        else:
            delay = self.base_delay.multiply(self.backoff_multiplier ** (attempt - 1))
        return self.max_delay if delay > self.max_delay else delay

    def can_retry(self, current_attempt: int) -> bool:
        return current_attempt < self.max_retries

    def remaining_retries(self, current_attempt: int) -> int:
        return max(0, self.max_retries - current_attempt)

    def with_max_retries(self, max_retries: int) -> "RetryPolicy":
        return RetryPolicy(
            max_retries, self.base_delay, self.max_delay,
            self.backoff_strategy, self.backoff_multiplier,
        )

    def __str__(self) -> str:
        if self.max_retries == 0:
            return "No retry"
        return (
            f"{self.max_retries} retries with {self.backoff_strategy.value} backoff "
            f"(base: {self.base_delay}, max: {self.max_delay})"
        )


# ═══════════════════════════════════════════════════════════════════════════════
# Web primitives
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Url:
    """Absolute URL with a scheme and a host."""
    value: str

    @classmethod
    def create(cls, value: str) -> "Url":
        if not value or not value.strip():
            raise ValidationError("URL cannot be empty")
        parsed = urlparse(value.strip())
        if not parsed.scheme or not parsed.netloc:
            raise ValidationError(f"Invalid URL format: {value}")
        return cls(value.strip())

    @classmethod
    def is_valid(cls, value: str) -> bool:
        try:
            cls.create(value)
            return True
        except ValidationError:
            return False

    @property
    def host(self) -> str:
        return urlparse(self.value).hostname or ""

    @property
    def path(self) -> str:
        return urlparse(self.value).path

    @property
    def scheme(self) -> str:
        return urlparse(self.value).scheme

    def is_secure(self) -> bool:
        return self.scheme == "https"

    def is_same_origin(self, other: "Url") -> bool:
        a, b = urlparse(self.value), urlparse(other.value)
        return (a.scheme, a.netloc) == (b.scheme, b.netloc)

    def with_path(self, path: str) -> "Url":
        parsed = urlparse(self.value)
        return Url.create(urlunparse(parsed._replace(path=path)))

    def __str__(self) -> str:
        return self.value


_MAX_WIDTH, _MAX_HEIGHT = 7680, 4320


@dataclass(frozen=True)
class Viewport:
    """Browser viewport in CSS pixels (bounded by 8K)."""
    width: int = 1920
    height: int = 1080

    def __post_init__(self):
        if not isinstance(self.width, int) or not isinstance(self.height, int):
            raise ValidationError("Viewport dimensions must be integers")
        if self.width <= 0 or self.height <= 0:
            raise ValidationError("Viewport dimensions must be positive")
        if self.width > _MAX_WIDTH or self.height > _MAX_HEIGHT:
            raise ValidationError("Viewport dimensions cannot exceed 8K resolution")

    @classmethod
    def desktop(cls) -> "Viewport":
        return cls(1920, 1080)

    @classmethod
    def laptop(cls) -> "Viewport":
        return cls(1366, 768)

    @classmethod
    def tablet(cls) -> "Viewport":
        return cls(768, 1024)

    @classmethod
    def mobile(cls) -> "Viewport":
        return cls(375, 667)

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def is_mobile(self) -> bool:
        return self.width <= 768

    def is_desktop(self) -> bool:
        return self.width > 1024

    def to_dict(self) -> Dict[str, int]:
        return {"width": self.width, "height": self.height}

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


class SelectorType(Enum):
    CSS = "css"
    XPATH = "xpath"
    TEXT = "text"
    DATA_TESTID = "data-testid"


@dataclass(frozen=True)
class ElementSelector:
    """A way to locate an element on the page."""
    value: str
    type: SelectorType = SelectorType.CSS

    def __post_init__(self):
        if not self.value or not self.value.strip():
            raise ValidationError(f"{self.type.value} selector cannot be empty")
        if self.type == SelectorType.XPATH and not self.value.startswith(("/", "./", "(")):
            raise ValidationError("XPath must start with /, ./ or (")
        if self.type == SelectorType.CSS and self.value.count("(") != self.value.count(")"):
            raise ValidationError("Invalid CSS selector syntax")

    @classmethod
    def css(cls, selector: str) -> "ElementSelector":
        return cls(selector, SelectorType.CSS)

    @classmethod
    def xpath(cls, selector: str) -> "ElementSelector":
        return cls(selector, SelectorType.XPATH)

    @classmethod
    def text(cls, text: str) -> "ElementSelector":
        return cls(text, SelectorType.TEXT)

    @classmethod
    def data_testid(cls, test_id: str) -> "ElementSelector":
        return cls(test_id, SelectorType.DATA_TESTID)

    def to_css_selector(self) -> str:
        if self.type == SelectorType.CSS:
            return self.value
        if self.type == SelectorType.DATA_TESTID:
            return f'[data-testid="{self.value}"]'
        raise ValidationError(f"Cannot convert {self.type.value} selector to CSS")

    def __str__(self) -> str:
        if self.type == SelectorType.TEXT:
            return f"text={self.value}"
        if self.type == SelectorType.DATA_TESTID:
            return f'[data-testid="{self.value}"]'
        return self.value


# ═══════════════════════════════════════════════════════════════════════════════
# Task classification
# ═══════════════════════════════════════════════════════════════════════════════


class PriorityLevel(Enum):
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


@dataclass(frozen=True)
class Priority:
    """Task priority. Higher numeric value is dequeued first."""
    level: PriorityLevel = PriorityLevel.MEDIUM

    @classmethod
    def high(cls) -> "Priority":
        return cls(PriorityLevel.HIGH)

    @classmethod
    def medium(cls) -> "Priority":
        return cls(PriorityLevel.MEDIUM)

    @classmethod
    def low(cls) -> "Priority":
        return cls(PriorityLevel.LOW)

    @classmethod
    def critical(cls) -> "Priority":
        return cls(PriorityLevel.CRITICAL)

    @classmethod
    def from_string(cls, level: str) -> "Priority":
        try:
            return cls(PriorityLevel[level.strip().upper()])
        except KeyError:
            raise ValidationError(f"Invalid priority level: {level}")

    @classmethod
    def from_planner_score(cls, score: int) -> "Priority":
        """Map the planner's 1-5 priority score onto a level."""
        if score >= 4:
            return cls.high()
        if score == 3:
            return cls.medium()
        return cls.low()

    @property
    def value(self) -> int:
        return self.level.value

    @property
    def name(self) -> str:
        return self.level.name.lower()

    def is_high(self) -> bool:
        return self.level in (PriorityLevel.HIGH, PriorityLevel.CRITICAL)

    def is_higher_than(self, other: "Priority") -> bool:
        return self.value > other.value

    def __str__(self) -> str:
        return self.name


class IntentType(Enum):
    """Concrete browser-level intents a task can carry."""
    CLICK = "click"
    EXTRACT = "extract"
    NAVIGATE = "navigate"
    FILL = "fill"
    SELECT = "select"
    WAIT = "wait"
    SCROLL = "scroll"
    HOVER = "hover"
    TYPE = "type"
    SUBMIT = "submit"
    VERIFY = "verify"
    CAPTURE = "capture"


_INTERACTIVE = {IntentType.CLICK, IntentType.FILL, IntentType.SELECT, IntentType.TYPE,
                IntentType.SUBMIT, IntentType.HOVER, IntentType.SCROLL}
_READ_ONLY = {IntentType.EXTRACT, IntentType.VERIFY, IntentType.CAPTURE,
              IntentType.WAIT, IntentType.HOVER}


@dataclass(frozen=True)
class Intent:
    """A concrete task intent."""
    type: IntentType

    @classmethod
    def create(cls, value: str) -> "Intent":
        try:
            return cls(IntentType(value.strip().lower()))
        except ValueError:
            valid = ", ".join(i.value for i in IntentType)
            raise ValidationError(f"Invalid intent: {value}. Valid intents are: {valid}")

    @property
    def value(self) -> str:
        return self.type.value

    def is_interactive(self) -> bool:
        return self.type in _INTERACTIVE

    def is_read_only(self) -> bool:
        return self.type in _READ_ONLY

    def is_navigation(self) -> bool:
        return self.type in (IntentType.NAVIGATE, IntentType.SCROLL)

    def __str__(self) -> str:
        return self.type.value


# ═══════════════════════════════════════════════════════════════════════════════
# Variable
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Variable:
    """
    Immutable name/value/secret triple.

    `public_value()` is the only sanctioned way to put a value into logs or
    prompts: secrets render as the `{{name}}` placeholder.
    """
    name: str
    value: str = ""
    is_secret: bool = False

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValidationError("Variable name cannot be empty")

    def public_value(self) -> str:
        return f"{{{{{self.name}}}}}" if self.is_secret else self.value

    def dangerous_value(self) -> str:
        """The raw value. Only for interpolation right before the browser call."""
        return self.value

    def with_value(self, value: str) -> "Variable":
        return Variable(self.name, value, self.is_secret)

    def with_secret_flag(self, is_secret: bool) -> "Variable":
        return Variable(self.name, self.value, is_secret)

    def to_public_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "value": self.public_value(), "is_secret": self.is_secret}

    def __repr__(self) -> str:
        return f"Variable(name={self.name!r}, value={self.public_value()!r}, is_secret={self.is_secret})"


# ═══════════════════════════════════════════════════════════════════════════════
# Evidence
# ═══════════════════════════════════════════════════════════════════════════════


class EvidenceType(Enum):
    SCREENSHOT = "screenshot"
    ELEMENT = "element"
    TEXT = "text"
    HTML = "html"


@dataclass(frozen=True)
class Evidence:
    """Typed artifact attached to a result or event for traceability."""
    type: EvidenceType
    data: str
    source: str = "executor"
    description: Optional[str] = None
    confidence: Optional[float] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not self.data or not self.data.strip():
            raise ValidationError("Evidence data cannot be empty")
        if self.confidence is not None and not 0 <= self.confidence <= 100:
            raise ValidationError("Evidence confidence must be between 0 and 100")

    @classmethod
    def screenshot(cls, data: str, source: str = "browser") -> "Evidence":
        return cls(EvidenceType.SCREENSHOT, data, source, "Page screenshot")

    @classmethod
    def text(cls, data: str, source: str = "executor", confidence: Optional[float] = None) -> "Evidence":
        return cls(EvidenceType.TEXT, data, source, "Extracted text", confidence)

    def preview(self, max_length: int = 100) -> str:
        if len(self.data) <= max_length:
            return self.data
        return self.data[:max_length - 3] + "..."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "source": self.source,
            "description": self.description,
            "confidence": self.confidence,
            "preview": self.preview(),
            "timestamp": self.timestamp.isoformat(),
        }
