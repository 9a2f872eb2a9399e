"""
Error report canonicalization.

Turns a raw error report (message + stack trace) into a normalized,
signature-bearing pattern that can be deduplicated and compared against the
patterns already in the store.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class ErrorReport:
    """A raw error report as submitted by a client."""

    error_message: str
    stack_trace: str = ""
    error_type: str | None = None
    file_path: str | None = None
    line_number: int | None = None
    code_snippet: str | None = None
    environment: str | None = None
    language: str | None = None
    framework: str | None = None

    @property
    def raw_log(self) -> str:
        return f"{self.error_message}\n{self.stack_trace}"


@dataclass
class CanonicalPattern:
    """Normalized, comparable form of an error report."""

    signature: str
    error_type: str
    error_message: str
    normalized_stack: str
    language: str
    category: str
    severity: str
    framework: str | None = None
    key_frames: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ErrorTypeRule:
    """Message regex mapped to an error type label.

    When ``capture`` is set, the label is taken from its first group if it
    matches the message.
    """

    pattern: re.Pattern[str]
    label: str
    capture: re.Pattern[str] | None = None

    def apply(self, message: str) -> str | None:
        if not self.pattern.search(message):
            return None
        if self.capture is not None:
            match = self.capture.search(message)
            if match:
                return match.group(1)
        return self.label


def _rule(pattern: str, label: str, capture: str | None = None) -> ErrorTypeRule:
    return ErrorTypeRule(
        pattern=re.compile(pattern, re.IGNORECASE),
        label=label,
        capture=re.compile(capture) if capture else None,
    )


UNKNOWN_ERROR_TYPE = "UnknownError"
UNKNOWN_CATEGORY = "UNKNOWN"
UNKNOWN_LANGUAGE = "unknown"

# Evaluated first-match-wins; order matters.
ERROR_TYPE_RULES: list[ErrorTypeRule] = [
    # JavaScript / TypeScript
    _rule(r"cannot read propert", "TypeError"),
    _rule(r"is not defined|is not a function", "ReferenceError"),
    _rule(r"unexpected token|unexpected end", "SyntaxError"),
    _rule(r"maximum call stack", "RangeError"),
    _rule(r"null|undefined", "NullReferenceError"),
    # Python
    _rule(r"AttributeError|NameError|TypeError|ValueError", "PythonError", capture=r"^(\w+Error)"),
    # Network / async
    _rule(r"timeout|ECONNREFUSED|ETIMEDOUT|fetch failed", "NetworkError"),
    _rule(r"promise|async", "AsyncError"),
    # Database
    _rule(r"sql|database|query|connection", "DatabaseError"),
]


CategoryPredicate = Callable[[str, str, str], bool]


def _matches(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern, re.IGNORECASE)
    return lambda text: bool(compiled.search(text))


_null_like = _matches(r"null|undefined|cannot read property")
_mentions_null = _matches(r"null|undefined")
_async_message = _matches(r"async|promise|await")
_async_stack = _matches(r"async|promise")
_missing_module = _matches(r"cannot find module|module not found|no module named")
_configuration = _matches(r"config|environment|env")
_security = _matches(r"cors|csrf|unauthorized|forbidden|authentication")
_performance = _matches(r"timeout|memory|heap|maximum call stack")

# (predicate(error_type, message, stack), label), first match wins.
CATEGORY_RULES: list[tuple[CategoryPredicate, str]] = [
    (lambda t, m, s: t == "TypeError" and _null_like(m), "NULL_REFERENCE"),
    (lambda t, m, s: t == "TypeError" and not _mentions_null(m), "TYPE_ERROR"),
    (lambda t, m, s: t == "SyntaxError", "SYNTAX_ERROR"),
    (lambda t, m, s: _async_message(m) or _async_stack(s), "ASYNC_ERROR"),
    (lambda t, m, s: _missing_module(m), "DEPENDENCY_ERROR"),
    (lambda t, m, s: _configuration(m), "CONFIGURATION_ERROR"),
    (lambda t, m, s: _security(m), "SECURITY_ERROR"),
    (lambda t, m, s: _performance(m), "PERFORMANCE_ERROR"),
]

SEVERITY_TIERS = ["LOW", "MEDIUM", "HIGH", "CRITICAL"]

_memory_pressure = _matches(r"heap|memory")

# (predicate(category, error_type, message), severity) before environment elevation.
SEVERITY_RULES: list[tuple[Callable[[str, str, str], bool], str]] = [
    (lambda c, t, m: c == "PERFORMANCE_ERROR" and (_memory_pressure(t) or _memory_pressure(m)), "CRITICAL"),
    (lambda c, t, m: c in ("SECURITY_ERROR", "ASYNC_ERROR", "NULL_REFERENCE"), "HIGH"),
    (lambda c, t, m: c in ("TYPE_ERROR", "DEPENDENCY_ERROR"), "MEDIUM"),
]

# Substrings marking frames that belong to dependencies or the runtime itself.
VENDOR_FRAME_MARKERS = ("node_modules", "internal/", "site-packages", "dist-packages")

CALL_FRAME_PATTERN = re.compile(r"\bat\s+([^\s(]+)")

# Python tracebacks list the outermost call first.
PYTHON_FRAME_PATTERN = re.compile(r'File\s+"[^"]*",\s+line\s+\d+,\s+in\s+([\w.<>]+)')
PYTHON_TRACEBACK_HEADER = "Traceback (most recent call last)"

MAX_KEY_FRAMES = 5

LANGUAGE_RULES: list[tuple[Callable[[str, str], bool], Callable[[str, str], str]]] = [
    (
        lambda msg, stack: bool(re.search(r"TypeError|ReferenceError|SyntaxError", msg))
        or bool(re.search(r"\.js|\.ts|\.jsx|\.tsx", stack)),
        lambda msg, stack: "typescript" if re.search(r"\.tsx?", stack) else "javascript",
    ),
    (
        lambda msg, stack: bool(re.search(r"Error\s*:\s*[A-Z]\w+Error", msg)) or ".py" in stack,
        lambda msg, stack: "python",
    ),
    (lambda msg, stack: bool(re.search(r"Exception|\.java", stack)), lambda msg, stack: "java"),
    (lambda msg, stack: bool(re.search(r"panic|\.go:", stack)), lambda msg, stack: "go"),
    (lambda msg, stack: ".rb" in stack, lambda msg, stack: "ruby"),
]

FRAMEWORK_KEYWORDS: list[tuple[str, str]] = [
    ("express", "express"),
    ("react", "react"),
    ("vue", "vue"),
    ("angular", "angular"),
    ("next", "nextjs"),
    ("django", "django"),
    ("flask", "flask"),
    ("spring", "spring"),
]

_MESSAGE_REPLACEMENTS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE), "<UUID>"),
    (re.compile(r"0x[0-9a-f]+", re.IGNORECASE), "<HEX>"),
    (re.compile(r"[A-Z]:\\[^:\s]+"), "<PATH>"),
    (re.compile(r"/[\w/.-]+\.(?:js|ts|py|java|go|rb)", re.IGNORECASE), "<FILE>"),
    (re.compile(r'"[^"]*"'), "<STR>"),
    (re.compile(r"'[^']*'"), "<STR>"),
    (re.compile(r"\b\d+\b"), "<NUM>"),
    (re.compile(r"\s+"), " "),
]

_STACK_REPLACEMENTS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"webpack:///\."), "<MODULE>"),
    (re.compile(r"[A-Z]:\\[^:\s)]+"), "<PATH>"),
    (re.compile(r"/[\w/.-]+"), "<PATH>"),
    (re.compile(r":\d+:\d+"), ":LINE:COL"),
    (re.compile(r":\d+"), ":LINE"),
    (re.compile(r"<anonymous>"), "<ANON>"),
]


class PatternCanonicalizer:
    """Extracts normalized patterns from raw error reports."""

    def __init__(
        self,
        error_type_rules: list[ErrorTypeRule] | None = None,
        category_rules: list[tuple[CategoryPredicate, str]] | None = None,
    ) -> None:
        self._error_type_rules = error_type_rules if error_type_rules is not None else ERROR_TYPE_RULES
        self._category_rules = category_rules if category_rules is not None else CATEGORY_RULES

    def canonicalize(self, report: ErrorReport) -> CanonicalPattern:
        message = report.error_message or ""
        stack = report.stack_trace or ""

        error_type = self.detect_error_type(message, report.error_type)
        normalized_message = normalize_message(message)
        normalized_stack = normalize_stack_trace(stack)
        key_frames = extract_key_frames(stack)
        category = self.categorize_error(error_type, normalized_message, normalized_stack)
        severity = determine_severity(error_type, category, normalized_message, report.environment)
        language = detect_language(message, stack, report.language)
        framework = detect_framework(message, stack, report.framework)

        return CanonicalPattern(
            signature=generate_signature(error_type, normalized_message, key_frames),
            error_type=error_type,
            error_message=normalized_message,
            normalized_stack=normalized_stack,
            language=language,
            framework=framework,
            category=category,
            severity=severity,
            key_frames=key_frames,
            tags=generate_tags(error_type, category, framework),
        )

    def detect_error_type(self, message: str, explicit: str | None = None) -> str:
        if explicit:
            return explicit
        for rule in self._error_type_rules:
            label = rule.apply(message)
            if label:
                return label
        return UNKNOWN_ERROR_TYPE

    def categorize_error(self, error_type: str, message: str, stack: str) -> str:
        for predicate, label in self._category_rules:
            if predicate(error_type, message, stack):
                return label
        return UNKNOWN_CATEGORY


def normalize_message(message: str) -> str:
    """Replace volatile values (paths, numbers, strings, ids) with placeholders."""
    normalized = message or ""
    for pattern, placeholder in _MESSAGE_REPLACEMENTS:
        normalized = pattern.sub(placeholder, normalized)
    return normalized.strip()


def normalize_stack_trace(stack_trace: str) -> str:
    """Strip paths and positions from every frame, dropping empty lines."""
    lines: list[str] = []
    for line in (stack_trace or "").split("\n"):
        for pattern, placeholder in _STACK_REPLACEMENTS:
            line = pattern.sub(placeholder, line)
        line = line.strip()
        if line:
            lines.append(line)
    return "\n".join(lines)


def extract_key_frames(stack_trace: str) -> list[str]:
    """Call-site identifiers of the application frames, closest first."""
    stack_trace = stack_trace or ""
    python_trace = PYTHON_TRACEBACK_HEADER in stack_trace or PYTHON_FRAME_PATTERN.search(stack_trace) is not None
    pattern = PYTHON_FRAME_PATTERN if python_trace else CALL_FRAME_PATTERN

    frames: list[str] = []
    for line in stack_trace.split("\n"):
        if any(marker in line for marker in VENDOR_FRAME_MARKERS):
            continue
        match = pattern.search(line)
        if match:
            frames.append(match.group(1))

    if python_trace:
        frames.reverse()
    return frames[:MAX_KEY_FRAMES]


def determine_severity(
    error_type: str, category: str, message: str = "", environment: str | None = None
) -> str:
    severity = "LOW"
    for predicate, label in SEVERITY_RULES:
        if predicate(category, error_type, message):
            severity = label
            break

    # Production elevates every category except syntax errors by one tier.
    if (environment or "").lower() == "production" and category != "SYNTAX_ERROR":
        tier = SEVERITY_TIERS.index(severity)
        severity = SEVERITY_TIERS[min(tier + 1, len(SEVERITY_TIERS) - 1)]
    return severity


def detect_language(message: str, stack_trace: str, explicit: str | None = None) -> str:
    if explicit:
        return explicit
    for predicate, resolve in LANGUAGE_RULES:
        if predicate(message, stack_trace):
            return resolve(message, stack_trace)
    return UNKNOWN_LANGUAGE


def detect_framework(message: str, stack_trace: str, explicit: str | None = None) -> str | None:
    if explicit:
        return explicit
    combined = f"{stack_trace} {message}".lower()
    for keyword, framework in FRAMEWORK_KEYWORDS:
        if keyword in combined:
            return framework
    return None


def generate_tags(error_type: str, category: str, framework: str | None = None) -> list[str]:
    tags = [error_type.lower(), category.lower()]
    if framework:
        tags.append(framework)
    return tags


def generate_signature(error_type: str, normalized_message: str, key_frames: list[str]) -> str:
    """Short deterministic hash used as the pattern dedup key."""
    data = f"{error_type}|{normalized_message}|{'|'.join(key_frames)}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]
