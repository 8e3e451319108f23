"""Deterministic campaign copy: platform prompts, aspect ratios and template scripts."""

from __future__ import annotations

from typing import Literal

from nebula.schemas.campaign import CreateCampaignRequest

DEFAULT_ASPECT_RATIO = "16:9"

_PLATFORM_ASPECT_RATIOS: dict[str, str] = {
    "instagram": "1:1",
    "facebook": "16:9",
    "youtube": "16:9",
    "tiktok": "9:16",
    "linkedin": "16:9",
    "twitter": "16:9",
}


def aspect_ratio_for_platform(platform: str) -> str:
    return _PLATFORM_ASPECT_RATIOS.get(platform.strip().lower(), DEFAULT_ASPECT_RATIO)


def platform_prompt(brief: CreateCampaignRequest, platform: str, asset_type: Literal["image", "video"]) -> str:
    audience = brief.audience_description or f"{brief.audience_type} audience"
    parts = [
        f"Create a {brief.visual_style or 'professional'} {asset_type} for {platform}",
        f"featuring {brief.brand_name}",
        f"promoting {brief.product_name}" if brief.product_name else "",
        f"with {brief.brand_tone or 'modern'} tone",
        f"targeting {audience}",
        f"for {brief.objective}",
        f"using brand color {brief.primary_color}" if brief.primary_color else "",
        f"with call-to-action: {brief.cta}",
    ]
    return ", ".join(part for part in parts if part) + ". High quality, engaging, professional."


def template_script(brief: CreateCampaignRequest) -> str:
    product = f" - {brief.product_name}" if brief.product_name else ""
    audience = f"For {brief.audience_description}, " if brief.audience_description else ""
    pitch = brief.product_description or "Experience innovation like never before."
    subject = "lifestyle" if brief.audience_type == "B2C" else "business"
    return (
        f"[Opening Scene]\n"
        f"Welcome to {brief.brand_name}{product}!\n\n"
        f"[Main Message]\n"
        f"{audience}we bring you the perfect solution for {brief.objective.lower()}.\n\n"
        f"{pitch}\n\n"
        f"[Call to Action]\n"
        f"{brief.cta} today and transform your {subject}!\n\n"
        f"[Closing]\n"
        f"{brief.brand_name} - {brief.brand_tone or 'Your trusted partner'}."
    )


def template_scene_outline(brief: CreateCampaignRequest) -> list[str]:
    scenes = [
        f"Opening: {brief.brand_name} logo with dynamic animation",
        f"Scene 1: {brief.product_name or 'Product'} showcase in {brief.visual_style or 'modern'} style",
        f"Scene 2: Target audience ({brief.audience_description or brief.audience_type}) using the product",
        f"Scene 3: Key benefits highlight with {brief.brand_tone or 'professional'} tone",
    ]
    if brief.product_link:
        scenes.append(f"Scene 4: QR code or link display for {brief.product_link}")
    scenes.append(f"Closing: {brief.cta} with brand colors")
    return scenes
