"""图像生成（Pollinations）。

Pollinations 通过 URL 直接出图，无需密钥：
    {image_base_url}/{encoded_prompt}?width=..&height=..&model=..&nologo=true
生成结果是一次性的，不走流式。
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import quote, urlencode

import httpx

from zeno_core.config.settings import settings
from zeno_core.domain.exceptions import BusinessError
from zeno_core.infrastructure.logging.logger import logger


@dataclass(frozen=True)
class ImageStyle:
    width: int
    height: int
    model: str


IMAGE_STYLES: Dict[str, ImageStyle] = {
    "default": ImageStyle(1024, 1024, "flux"),
    "realistic": ImageStyle(1024, 1024, "flux-realism"),
    "anime": ImageStyle(1024, 1024, "flux-anime"),
    "3d": ImageStyle(1024, 1024, "flux-3d"),
    "fast": ImageStyle(512, 512, "turbo"),
    "landscape": ImageStyle(1280, 720, "flux"),
    "portrait": ImageStyle(720, 1280, "flux"),
    "square": ImageStyle(1024, 1024, "flux"),
}

QUALITY_TERMS = (
    "high quality",
    "detailed",
    "4k",
    "8k",
    "hdr",
    "realistic",
    "ultra detailed",
    "professional",
)


@dataclass
class ImageResult:
    url: str
    prompt: str
    enhanced_prompt: str
    width: int
    height: int
    model: str

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "prompt": self.prompt,
            "enhancedPrompt": self.enhanced_prompt,
            "width": self.width,
            "height": self.height,
            "model": self.model,
        }


def resolve_style(style: Optional[str]) -> ImageStyle:
    """未知风格回退到 default。"""
    return IMAGE_STYLES.get((style or "default").lower(), IMAGE_STYLES["default"])


def enhance_prompt(prompt: str) -> str:
    lowered = prompt.lower()
    if not any(term in lowered for term in QUALITY_TERMS) and len(prompt.split(" ")) < 15:
        return f"{prompt}, high quality, detailed, professional lighting"
    return prompt


class ImageGenerator:
    def __init__(self, cfg=settings):
        self._settings = cfg

    def build_url(self, prompt: str, style: ImageStyle, seed: Optional[int] = None) -> str:
        params = {
            "width": str(style.width),
            "height": str(style.height),
            "model": style.model,
            "nologo": "true",
        }
        if seed is not None:
            params["seed"] = str(seed)
        base = self._settings.image_base_url.rstrip("/")
        return f"{base}/{quote(prompt, safe='')}?{urlencode(params)}"

    def validate_url(self, url: str) -> bool:
        """HEAD 请求确认图片地址可用；任何网络错误视为不可用。"""
        try:
            with httpx.Client(timeout=self._settings.image_validate_timeout, trust_env=False) as client:
                resp = client.head(url, follow_redirects=True)
        except httpx.HTTPError as e:
            logger.warning("Image URL validation failed", extra={"extra": {"error": str(e)}})
            return False
        return resp.status_code < 400

    def generate(self, prompt: str, style: Optional[str] = None, seed: Optional[int] = None) -> ImageResult:
        preset = resolve_style(style)
        enhanced = enhance_prompt(prompt)
        url = self.build_url(enhanced, preset, seed)
        logger.log(
            logging.INFO,
            "Generating image",
            extra={"extra": {"prompt": prompt, "width": preset.width, "height": preset.height, "model": preset.model}},
        )
        if getattr(self._settings, "image_validate", False) and not self.validate_url(url):
            raise BusinessError(code="IMAGE_GENERATION_FAILED", message="Image generation failed", http_status=502)
        return ImageResult(
            url=url,
            prompt=prompt,
            enhanced_prompt=enhanced,
            width=preset.width,
            height=preset.height,
            model=preset.model,
        )
