"""意图匹配器：基于字面、正则与关键词重叠规则，将自由文本解析到工具与意图。"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from capability_router.domain.enums import PatternKind
from capability_router.domain.models import (
    AmbiguousMatch,
    Intent,
    IntentPattern,
    MatchCandidate,
    split_words,
)
from capability_router.domain.tools.registry import DescriptorStore

INTENT_SCORE = 1.0
SUMMARY_SCORE = 0.5
MIN_KEYWORD_LENGTH = 3

logger = logging.getLogger(__name__)


class IntentMatcher:
    """意图匹配器，本身无状态，可被并发调用。"""

    def match(self, text: str, store: DescriptorStore) -> MatchCandidate | AmbiguousMatch | None:
        """返回最高分候选；最高分并列时返回歧义集合；无候选返回 None。"""
        normalized = text.lower().strip()
        candidates: list[MatchCandidate] = []

        for tool in store.all_manifests():
            if self.matches_summary(normalized, tool.summary):
                candidates.append(MatchCandidate(tool=tool, score=SUMMARY_SCORE))

            try:
                capability = store.load_capability(tool)
            except Exception as exc:
                # 单个工具能力不可用时跳过，不中断整体扫描。
                logger.debug(
                    "capability unavailable during match",
                    extra={"event": "matcher.capability.skipped", "op": tool.name, "error": str(exc)},
                )
                continue

            intent = self.find_intent(capability.intents, normalized)
            if intent is not None:
                candidates.append(MatchCandidate(tool=tool, score=INTENT_SCORE, intent=intent))

        if not candidates:
            return None

        candidates.sort(key=lambda item: item.score, reverse=True)
        top_score = candidates[0].score
        if len(candidates) > 1 and candidates[1].score == top_score:
            return AmbiguousMatch(
                candidates=[
                    {"tool": item.tool.name, "domain": item.tool.domain}
                    for item in candidates
                    if item.score == top_score
                ]
            )
        return candidates[0]

    @staticmethod
    def matches_summary(text: str, summary: str) -> bool:
        """输入与工具摘要至少共享一个长度大于 2 的关键词。"""
        summary_words = set(split_words(summary))
        return any(len(word) >= MIN_KEYWORD_LENGTH and word in summary_words for word in split_words(text))

    def find_intent(self, intents: Iterable[Intent], text: str) -> Intent | None:
        """返回第一个任一模式命中的意图。"""
        normalized = text.lower().strip()
        input_words = set(split_words(normalized))
        for intent in intents:
            for pattern in intent.compiled_patterns:
                if self._pattern_matches(pattern, normalized, input_words):
                    return intent
        return None

    @staticmethod
    def _pattern_matches(pattern: IntentPattern, normalized: str, input_words: set[str]) -> bool:
        if pattern.kind is PatternKind.regex:
            return pattern.regex is not None and pattern.regex.search(normalized) is not None

        if pattern.text in normalized or normalized in pattern.text:
            return True

        if not pattern.words:
            return False
        overlap = sum(1 for word in pattern.words if len(word) >= MIN_KEYWORD_LENGTH and word in input_words)
        return overlap * 2 >= len(pattern.words)
