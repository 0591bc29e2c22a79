"""Heuristic line classifier.

A raw output line passes through four ordered stages:

1. noise rejection   - operational chatter (terminal, build, log levels, tool calls)
2. marker extraction - ``[Builder] ...`` / ``Chat: ...`` style role tags
3. implicit match    - unmarked dialogue, role guessed from its wording
4. validity gate     - length bounds and trivial/echo content

Each stage is a pure method so it can be exercised on its own. The vocabulary
comes from :mod:`recorder.classifier_rules`.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from recorder.classifier_rules import ClassifierRules, default_classifier_rules
from recorder.models import LifecycleEvent

logger = logging.getLogger("recorder.classifier")

OUTCOME_EMPTY = "empty"
OUTCOME_NOISE = "noise"
OUTCOME_NO_MATCH = "no_match"
OUTCOME_INVALID = "invalid"
OUTCOME_ACCEPTED = "accepted"

_PURE_NUMERIC_RE = re.compile(r"^[\s\d.,:+\-]+$")


@dataclass(frozen=True)
class Candidate:
    role: str
    text: str


def _is_word_char(ch: str) -> bool:
    return ch.isascii() and (ch.isalnum() or ch == "_")


def _keyword_pattern(keyword: str) -> str:
    """ASCII words match whole-word; CJK and punctuation match as substrings."""
    pattern = re.escape(keyword)
    if _is_word_char(keyword[0]):
        pattern = r"(?<![A-Za-z0-9_])" + pattern
    if _is_word_char(keyword[-1]):
        pattern = pattern + r"(?![A-Za-z0-9_])"
    return pattern


def _compile_vocabulary(words: tuple[str, ...]) -> re.Pattern | None:
    tokens = [w for w in words if w]
    if not tokens:
        return None
    # Longest first so multi-word phrases win over their prefixes.
    tokens.sort(key=len, reverse=True)
    return re.compile("|".join(_keyword_pattern(w) for w in tokens), re.IGNORECASE)


def _compile_patterns(patterns: tuple[str, ...]) -> list[re.Pattern]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            logger.warning(f"Skipping invalid echo pattern {pattern!r}: {e}")
    return compiled


class LineClassifier:
    """Turns one trimmed output line into at most one role-attributed candidate."""

    def __init__(self, rules: ClassifierRules | None = None):
        self.rules = rules or default_classifier_rules()
        self._noise = _compile_vocabulary(self.rules.noise_keywords)
        self._dialogue = _compile_vocabulary(self.rules.dialogue_indicators)
        self._question = _compile_vocabulary(self.rules.question_indicators)
        self._implementation = _compile_vocabulary(self.rules.implementation_indicators)
        self._trivial = {phrase.strip().lower() for phrase in self.rules.trivial_phrases}
        self._echo = _compile_patterns(self.rules.echo_patterns)

    # ── Stage 1 ─────────────────────────────────────────────────────

    def is_noise(self, line: str) -> bool:
        return bool(self._noise and self._noise.search(line))

    # ── Stage 2 ─────────────────────────────────────────────────────

    def match_marker(self, line: str) -> Candidate | None:
        """Role from an explicit tag. ``[Tag]`` may appear anywhere, ``Name:`` only as a prefix."""
        for role, markers in self.rules.role_markers:
            for marker in markers:
                if marker.startswith("["):
                    index = line.find(marker)
                elif line.startswith(marker):
                    index = 0
                else:
                    index = -1
                if index != -1:
                    return Candidate(role=role, text=line[index + len(marker):].strip())
        return None

    # ── Stage 3 ─────────────────────────────────────────────────────

    def looks_like_dialogue(self, line: str) -> bool:
        if len(line) <= self.rules.implicit_min_length:
            return False
        return bool(self._dialogue and self._dialogue.search(line))

    def infer_role(self, line: str) -> str | None:
        # Precedence: question > implementation > long text.
        if self._question and self._question.search(line):
            return "USER"
        if self._implementation and self._implementation.search(line):
            return "AGENT_BUILDER"
        if len(line) > self.rules.chat_min_length:
            return "AGENT_CHAT"
        return None

    def match_implicit(self, line: str) -> Candidate | None:
        if not self.looks_like_dialogue(line):
            return None
        role = self.infer_role(line)
        if role is None:
            return None
        return Candidate(role=role, text=line)

    # ── Stage 4 ─────────────────────────────────────────────────────

    def is_valid_content(self, text: str) -> bool:
        content = text.strip()
        if not (self.rules.min_content_length <= len(content) <= self.rules.max_content_length):
            return False
        if _PURE_NUMERIC_RE.match(content) and any(ch.isdigit() for ch in content):
            return False
        if not any(ch.isalnum() for ch in content):
            return False
        if content.lower() in self._trivial:
            return False
        return not any(pattern.search(content) for pattern in self._echo)

    # ── Pipeline ────────────────────────────────────────────────────

    def explain(self, line: str) -> tuple[Candidate | None, str]:
        """Run the pipeline and report which stage decided the outcome."""
        text = (line or "").strip()
        if not text:
            return None, OUTCOME_EMPTY
        if self.is_noise(text):
            return None, OUTCOME_NOISE

        candidate = self.match_marker(text)
        if candidate is None:
            candidate = self.match_implicit(text)
        if candidate is None:
            return None, OUTCOME_NO_MATCH

        if not self.is_valid_content(candidate.text):
            return None, OUTCOME_INVALID
        return Candidate(role=candidate.role, text=candidate.text.strip()), OUTCOME_ACCEPTED

    def classify(self, line: str) -> Candidate | None:
        candidate, _ = self.explain(line)
        return candidate


# ── Lifecycle events ───────────────────────────────────────────────

def _location(event: LifecycleEvent) -> str | None:
    if event.filePath and event.line is not None:
        return f"{event.filePath}:{event.line}"
    return None


def lifecycle_candidate(event: LifecycleEvent) -> Candidate | None:
    """Fixed role/text template per lifecycle event; these skip the line pipeline."""
    kind = event.type
    name = (event.name or "").strip()

    if kind in ("terminal_opened", "terminal_closed", "terminal_interaction",
                "debug_session_started", "debug_session_stopped"):
        if not name:
            return None
        templates = {
            "terminal_opened": ("AGENT_BUILDER", "terminal created: {}"),
            "terminal_closed": ("AGENT_BUILDER", "terminal closed: {}"),
            "terminal_interaction": ("USER", "terminal interaction: {}"),
            "debug_session_started": ("AGENT_BUILDER", "debug session started: {}"),
            "debug_session_stopped": ("AGENT_BUILDER", "debug session ended: {}"),
        }
        role, template = templates[kind]
        return Candidate(role=role, text=template.format(name))

    if kind == "debug_output":
        output = (event.output or "").strip()
        if not output:
            return None
        return Candidate(role="AGENT_BUILDER", text=f"debug output: {output}")

    if kind in ("breakpoint_added", "breakpoint_removed"):
        verb = "set" if kind == "breakpoint_added" else "removed"
        location = _location(event)
        if location:
            return Candidate(role="USER", text=f"breakpoint {verb}: {location}")
        function_name = (event.functionName or "").strip()
        if function_name:
            return Candidate(role="USER", text=f"function breakpoint {verb}: {function_name}")
        return None

    return None
