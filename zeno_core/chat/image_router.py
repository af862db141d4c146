"""图像请求路由。

用一组有序的前缀正则判断用户消息是否在请求生成图像；
命中时剥离触发短语得到描述性 prompt，图像请求绕过补全引擎。
这是简单的关键字分类器，未命中的说法一律按普通对话处理。
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence

_NOUNS = r"(image|picture|photo|art|artwork|illustration)"
_PREPS = r"(of|for|about|showing|depicting|with)"

IMAGE_TRIGGER_PATTERNS: List[Pattern[str]] = [
    re.compile(r"^generate\s+(an?\s+)?image\s+" + _PREPS + r"\b", re.IGNORECASE),
    re.compile(r"^create\s+(an?\s+)?image\s+" + _PREPS + r"\b", re.IGNORECASE),
    re.compile(r"^make\s+(an?\s+)?" + _NOUNS + r"\s+" + _PREPS + r"\b", re.IGNORECASE),
    re.compile(r"^draw\s+(an?\s+)?(image|picture|art|artwork|illustration)?\s*" + _PREPS + r"?\b", re.IGNORECASE),
    re.compile(r"^(paint|sketch|design|illustrate)\b", re.IGNORECASE),
    re.compile(r"^generate\s+(an?\s+)?(picture|photo|art|artwork|illustration)\s+" + _PREPS + r"\b", re.IGNORECASE),
    re.compile(r"^create\s+(an?\s+)?(picture|photo|art|artwork|illustration)\s+" + _PREPS + r"\b", re.IGNORECASE),
    re.compile(r"^(show|give)\s+me\s+(an?\s+)?(image|picture|photo|art)\s+" + _PREPS + r"\b", re.IGNORECASE),
    re.compile(r"^imagine\b", re.IGNORECASE),
    re.compile(r"^visualize\b", re.IGNORECASE),
]

# 用于剥离触发短语，按顺序尝试，第一个命中的生效
PROMPT_PREFIX_PATTERNS: List[Pattern[str]] = [
    re.compile(
        r"^(generate|create|make|draw|paint|sketch|design|illustrate|imagine|visualize)\s+(an?\s+)?"
        + r"(?:" + _NOUNS + r"\b)?\s*"
        + r"(?:" + _PREPS + r"\b)?\s*",
        re.IGNORECASE,
    ),
    re.compile(
        r"^(show|give)\s+me\s+(an?\s+)?" + _NOUNS + r"\b\s*(?:" + _PREPS + r"\b)?\s*",
        re.IGNORECASE,
    ),
]

MIN_PROMPT_CHARS = 3


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    message: str
    trigger: str


class ImageRequestRouter:
    def __init__(
        self,
        triggers: Sequence[Pattern[str]] = IMAGE_TRIGGER_PATTERNS,
        prefixes: Sequence[Pattern[str]] = PROMPT_PREFIX_PATTERNS,
    ):
        self._triggers = list(triggers)
        self._prefixes = list(prefixes)

    def match(self, message: str) -> Optional[Pattern[str]]:
        trimmed = (message or "").strip()
        for pattern in self._triggers:
            if pattern.search(trimmed):
                return pattern
        return None

    def classify(self, message: str) -> bool:
        return self.match(message) is not None

    def extract_prompt(self, message: str) -> str:
        original = (message or "").strip()
        prompt = original
        for pattern in self._prefixes:
            m = pattern.match(prompt)
            if m:
                prompt = prompt[m.end():].strip()
                break
        if len(prompt) < MIN_PROMPT_CHARS:
            return original
        return prompt

    def route(self, message: str) -> Optional[ImageRequest]:
        """命中则返回 ImageRequest，否则返回 None 交给普通对话路径。"""

        trigger = self.match(message)
        if trigger is None:
            return None
        return ImageRequest(
            prompt=self.extract_prompt(message),
            message=message.strip(),
            trigger=trigger.pattern,
        )
