"""Classifier vocabulary: built-in defaults plus optional YAML overrides."""
from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from recorder.models import ROLES

logger = logging.getLogger("recorder.rules")

_DEFAULT_RULES: dict[str, Any] = {
    "noiseKeywords": [
        "终端", "terminal", "命令", "command", "npm", "git", "cd", "ls", "dir",
        "编译", "compile", "构建", "build", "运行", "run", "执行", "execute",
        "错误", "error", "警告", "warning", "信息", "info", "调试", "debug",
        "断点", "breakpoint", "工具调用", "tool_call", "Tool:", "工具:",
    ],
    # Order matters: the first role whose marker appears wins.
    "roleMarkers": [
        {"role": "AGENT_BUILDER", "markers": ["[Builder]", "Builder:"]},
        {"role": "AGENT_CHAT", "markers": ["[Chat]", "Chat:", "Assistant:"]},
        {"role": "USER", "markers": ["[User]", "User:", "USER:"]},
    ],
    "dialogueIndicators": [
        "你好", "请问", "谢谢", "帮助", "问题", "回答", "解释", "说明",
        "如何", "什么", "为什么", "怎样", "可以", "需要", "想要", "希望",
        "我觉得", "我认为", "建议", "推荐", "示例", "代码", "实现",
        "功能", "特性", "需求", "要求", "任务", "目标", "目的",
        "hello", "please", "thanks", "help", "question", "answer", "explain",
        "how", "what", "why", "could you", "can you", "need", "want",
        "suggest", "recommend", "example", "code", "implement", "feature",
        "requirement", "task", "goal",
    ],
    "questionIndicators": ["?", "？", "请问", "如何", "什么", "为什么", "how", "what", "why"],
    "implementationIndicators": [
        "代码", "实现", "功能", "工具", "code", "implement", "implementation", "function", "tool",
    ],
    "trivialPhrases": ["OK", "成功", "失败", "错误", "完成", "开始", "结束", "done", "success", "failed"],
    "echoPatterns": [
        r"^执行命令[:：]",
        r"^工具调用[:：]",
        r"^终端已",
        r"^调试会话",
        r"^\$\s",
        r"^>\s",
        r"^(running|executing) command:",
        r"^tool call:",
    ],
    "minContentLength": 10,
    "maxContentLength": 5000,
    "implicitMinLength": 20,
    "chatMinLength": 100,
}

_LIST_KEYS = (
    "noiseKeywords",
    "dialogueIndicators",
    "questionIndicators",
    "implementationIndicators",
    "trivialPhrases",
    "echoPatterns",
)
_INT_KEYS = ("minContentLength", "maxContentLength", "implicitMinLength", "chatMinLength")


@dataclass(frozen=True)
class ClassifierRules:
    noise_keywords: tuple[str, ...]
    role_markers: tuple[tuple[str, tuple[str, ...]], ...]
    dialogue_indicators: tuple[str, ...]
    question_indicators: tuple[str, ...]
    implementation_indicators: tuple[str, ...]
    trivial_phrases: tuple[str, ...]
    echo_patterns: tuple[str, ...]
    min_content_length: int = 10
    max_content_length: int = 5000
    implicit_min_length: int = 20
    chat_min_length: int = 100


def default_rules_mapping() -> dict[str, Any]:
    """Return a deep copy of the built-in vocabulary."""
    return deepcopy(_DEFAULT_RULES)


def _coerce_strings(raw: Any) -> list[str] | None:
    if not isinstance(raw, list):
        return None
    values = [str(item) for item in raw if isinstance(item, (str, int, float)) and str(item).strip()]
    return values


def _merge_role_markers(defaults: list[dict[str, Any]], raw: Any) -> list[dict[str, Any]]:
    if not isinstance(raw, list):
        return defaults
    merged_by_role: dict[str, dict[str, Any]] = {item["role"]: item for item in defaults}
    for candidate in raw:
        if not isinstance(candidate, dict):
            continue
        role = str(candidate.get("role") or "").strip()
        if role not in ROLES:
            logger.warning(f"Ignoring markers for unknown role {role!r}")
            continue
        markers = _coerce_strings(candidate.get("markers"))
        if not markers:
            continue
        merged_by_role[role] = {"role": role, "markers": markers}
    return list(merged_by_role.values())


def normalize_rules_mapping(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Overlay a user-provided mapping onto the defaults, key by key."""
    rules = default_rules_mapping()
    if not isinstance(raw, dict):
        return rules

    for key in _LIST_KEYS:
        values = _coerce_strings(raw.get(key))
        if values:
            rules[key] = values

    rules["roleMarkers"] = _merge_role_markers(rules["roleMarkers"], raw.get("roleMarkers"))

    for key in _INT_KEYS:
        if key not in raw:
            continue
        try:
            value = int(raw[key])
        except (TypeError, ValueError):
            continue
        if value > 0:
            rules[key] = value

    if rules["minContentLength"] > rules["maxContentLength"]:
        logger.warning("minContentLength exceeds maxContentLength, restoring default bounds")
        rules["minContentLength"] = _DEFAULT_RULES["minContentLength"]
        rules["maxContentLength"] = _DEFAULT_RULES["maxContentLength"]
    return rules


def rules_from_mapping(mapping: dict[str, Any]) -> ClassifierRules:
    normalized = normalize_rules_mapping(mapping)
    return ClassifierRules(
        noise_keywords=tuple(normalized["noiseKeywords"]),
        role_markers=tuple(
            (item["role"], tuple(item["markers"])) for item in normalized["roleMarkers"]
        ),
        dialogue_indicators=tuple(normalized["dialogueIndicators"]),
        question_indicators=tuple(normalized["questionIndicators"]),
        implementation_indicators=tuple(normalized["implementationIndicators"]),
        trivial_phrases=tuple(normalized["trivialPhrases"]),
        echo_patterns=tuple(normalized["echoPatterns"]),
        min_content_length=normalized["minContentLength"],
        max_content_length=normalized["maxContentLength"],
        implicit_min_length=normalized["implicitMinLength"],
        chat_min_length=normalized["chatMinLength"],
    )


def default_classifier_rules() -> ClassifierRules:
    return rules_from_mapping(default_rules_mapping())


def load_classifier_rules(path: str | Path | None) -> ClassifierRules:
    """Load vocabulary overrides from a YAML file, falling back to defaults."""
    if not path:
        return default_classifier_rules()

    rules_path = Path(path).expanduser()
    if not rules_path.exists():
        logger.warning(f"Classifier rules file not found: {rules_path}; using defaults")
        return default_classifier_rules()

    try:
        parsed = yaml.safe_load(rules_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to read classifier rules from {rules_path}: {e}")
        return default_classifier_rules()

    if parsed is not None and not isinstance(parsed, dict):
        logger.warning(f"Classifier rules in {rules_path} must be a mapping; using defaults")
        return default_classifier_rules()

    logger.info(f"Loaded classifier rules from {rules_path}")
    return rules_from_mapping(parsed or {})
