"""Response analysis for autonomous mode.

Classifies the raw text produced by one agent invocation into an
``AnalysisResult``. Four independent passes run over the same text:

- file-change counting (mutation verb + path with a known extension)
- two-stage error detection (broad keyword capture, then benign-line removal)
- test-only detection (test runner mentioned, implementation work not)
- done-signal counting (one vote per completion phrase family, max 4)

Every pattern is a named ``PatternRule`` so each family can be tested and
extended on its own. The analyzer holds no state between calls.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Sequence


class Polarity(Enum):
    """Whether a rule match contributes to a signal or vetoes it."""

    MATCH = "match"
    SUPPRESS = "suppress"


@dataclass(frozen=True)
class PatternRule:
    """A named line predicate backed by a compiled regular expression."""

    name: str
    pattern: re.Pattern[str]
    polarity: Polarity = Polarity.MATCH

    def matches(self, line: str) -> bool:
        return self.pattern.search(line) is not None


def _rule(
    name: str,
    pattern: str,
    polarity: Polarity = Polarity.MATCH,
    flags: int = 0,
) -> PatternRule:
    return PatternRule(name=name, pattern=re.compile(pattern, flags), polarity=polarity)


FILE_EXTENSIONS = (
    "py", "js", "ts", "jsx", "tsx", "php", "sh", "md",
    "json", "yaml", "yml", "toml", "css", "html",
)

FILE_CHANGE_RULES: tuple[PatternRule, ...] = (
    _rule(
        "file_mutation",
        r"(?:Created|Modified|Updated|Wrote|Deleted)\b.*\.(?:"
        + "|".join(FILE_EXTENSIONS)
        + r")$",
    ),
)

# Stage 1: anything that might be an error
ERROR_CANDIDATE_RULES: tuple[PatternRule, ...] = (
    _rule("error_keyword", r"error|failed|exception|traceback", flags=re.IGNORECASE),
)

# Stage 2: lines that mention errors incidentally
BENIGN_ERROR_RULES: tuple[PatternRule, ...] = (
    _rule("json_error_field", r'"(?:is_)?error":', Polarity.SUPPRESS),
    _rule("json_error_empty_value", r'"error": (?:false|null|None)', Polarity.SUPPRESS),
    _rule("error_log_name", r"error_log|error\.log", Polarity.SUPPRESS),
    _rule("error_handler_name", r"error_handler|ErrorHandler|on_error", Polarity.SUPPRESS),
    _rule("logger_error_call", r"logger\.error|logging\.error", Polarity.SUPPRESS),
    _rule("test_error_vocabulary", r"test.*error|error.*test", Polarity.SUPPRESS),
    _rule("pip_error", r"pip.*error", Polarity.SUPPRESS),
    _rule("warning_about_error", r"WARNING.*error", Polarity.SUPPRESS),
    _rule("traceback_header", r"Traceback \(most recent", Polarity.SUPPRESS),
    _rule("stack_frame", r'File ".*", line', Polarity.SUPPRESS),
)

TEST_RUNNER_RULES: tuple[PatternRule, ...] = (
    _rule("test_runner", r"running tests|pytest|jest|phpunit|\bbats\b", flags=re.IGNORECASE),
)

IMPLEMENTATION_RULES: tuple[PatternRule, ...] = (
    _rule(
        "implementation_activity",
        r"implementing|creating|adding feature|building",
        Polarity.SUPPRESS,
        flags=re.IGNORECASE,
    ),
)

DONE_SIGNAL_RULES: tuple[PatternRule, ...] = (
    _rule("all_work_complete", r"all (?:tasks|items|features).*complete", flags=re.IGNORECASE),
    _rule(
        "project_complete",
        r"(?:project|implementation).*complete|\bcomplete\b.*\b(?:project|implementation)\b",
        flags=re.IGNORECASE,
    ),
    _rule("nothing_left", r"nothing (?:left|remaining|more) to", flags=re.IGNORECASE),
    _rule(
        "no_remaining_work",
        r"no (?:remaining|pending|outstanding) (?:tasks|items|work)",
        flags=re.IGNORECASE,
    ),
)

# A single iteration with at least this many done signals counts as strong
STRONG_DONE_SIGNALS = 2


@dataclass(frozen=True)
class AnalysisResult:
    """Structured view of one agent response."""

    files_changed_count: int = 0
    has_error: bool = False
    is_test_only: bool = False
    done_signal_count: int = 0
    error_lines: tuple[str, ...] = field(default_factory=tuple)
    done_signals: tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_strong_done_signal(self) -> bool:
        return self.done_signal_count >= STRONG_DONE_SIGNALS

    def summary(self) -> str:
        return (
            f"files={self.files_changed_count}, "
            f"error={str(self.has_error).lower()}, "
            f"test_only={str(self.is_test_only).lower()}, "
            f"done_signals={self.done_signal_count}"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "files_changed": self.files_changed_count,
            "has_error": self.has_error,
            "is_test_only": self.is_test_only,
            "done_signals": self.done_signal_count,
            "done_signal_families": list(self.done_signals),
            "error_lines": list(self.error_lines),
        }


def _any_match(rules: Iterable[PatternRule], line: str) -> bool:
    return any(rule.matches(line) for rule in rules)


def evaluate_signal(rules: Sequence[PatternRule], lines: Sequence[str]) -> bool:
    """True iff a MATCH rule hits some line and no SUPPRESS rule hits any line."""
    matched = False
    for rule in rules:
        hit = any(rule.matches(line) for line in lines)
        if hit and rule.polarity is Polarity.SUPPRESS:
            return False
        if hit:
            matched = True
    return matched


class ResponseAnalyzer:
    """Analyzes agent output for progress, errors and completion signals.

    Rule sets default to the module-level tables and can be replaced per
    instance, e.g. to add a project-specific benign error pattern.
    """

    def __init__(
        self,
        file_change_rules: Sequence[PatternRule] = FILE_CHANGE_RULES,
        error_candidate_rules: Sequence[PatternRule] = ERROR_CANDIDATE_RULES,
        benign_error_rules: Sequence[PatternRule] = BENIGN_ERROR_RULES,
        test_runner_rules: Sequence[PatternRule] = TEST_RUNNER_RULES,
        implementation_rules: Sequence[PatternRule] = IMPLEMENTATION_RULES,
        done_signal_rules: Sequence[PatternRule] = DONE_SIGNAL_RULES,
    ):
        self.file_change_rules = tuple(file_change_rules)
        self.error_candidate_rules = tuple(error_candidate_rules)
        self.benign_error_rules = tuple(benign_error_rules)
        self.test_runner_rules = tuple(test_runner_rules)
        self.implementation_rules = tuple(implementation_rules)
        self.done_signal_rules = tuple(done_signal_rules)

    def analyze(self, raw_text: str) -> AnalysisResult:
        """Analyze one response.

        Args:
            raw_text: Combined stdout/stderr of the agent invocation.

        Returns:
            AnalysisResult with all four signals. Empty or unusable input
            yields the all-minimum result.
        """
        lines = _split_lines(raw_text)
        if not lines:
            return AnalysisResult()

        error_lines = self.filter_benign(self.collect_error_candidates(lines))
        done_signals = self.matched_done_signals(lines)

        return AnalysisResult(
            files_changed_count=self.count_file_changes(lines),
            has_error=bool(error_lines),
            is_test_only=self.detect_test_only(lines),
            done_signal_count=len(done_signals),
            error_lines=tuple(error_lines),
            done_signals=tuple(done_signals),
        )

    def count_file_changes(self, lines: Sequence[str]) -> int:
        """Count distinct lines that report a file mutation."""
        mentions = {
            line.strip()
            for line in (raw.rstrip() for raw in lines)
            if _any_match(self.file_change_rules, line)
        }
        return len(mentions)

    def collect_error_candidates(self, lines: Sequence[str]) -> list[str]:
        """Stage 1: every line carrying error vocabulary."""
        return [line for line in lines if _any_match(self.error_candidate_rules, line)]

    def filter_benign(self, lines: Sequence[str]) -> list[str]:
        """Stage 2: drop lines matching a known-benign pattern."""
        return [line for line in lines if not _any_match(self.benign_error_rules, line)]

    def detect_test_only(self, lines: Sequence[str]) -> bool:
        """True iff a test run is mentioned and no implementation work is."""
        return evaluate_signal(self.test_runner_rules + self.implementation_rules, lines)

    def matched_done_signals(self, lines: Sequence[str]) -> list[str]:
        """Names of the done-signal families present, one vote each."""
        return [
            rule.name
            for rule in self.done_signal_rules
            if any(rule.matches(line) for line in lines)
        ]


def _split_lines(raw_text: Any) -> list[str]:
    if raw_text is None:
        return []
    if isinstance(raw_text, bytes):
        raw_text = raw_text.decode("utf-8", errors="replace")
    elif not isinstance(raw_text, str):
        raw_text = str(raw_text)
    return raw_text.splitlines()


_default_analyzer = ResponseAnalyzer()


def analyze(raw_text: str) -> AnalysisResult:
    """Analyze ``raw_text`` with the default rule tables."""
    return _default_analyzer.analyze(raw_text)
