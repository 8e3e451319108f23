"""Known generation features and their display metadata."""

from nebula.schemas.feature import FeatureId

FEATURE_NAMES: dict[FeatureId, str] = {
    FeatureId.TEXT_TO_IMAGE: "Text to Image",
    FeatureId.TEXT_TO_VIDEO: "Text to Video",
    FeatureId.TEXT_TO_AUDIO: "Text to Audio",
    FeatureId.FRAME_TO_VIDEO: "Frame to Video",
    FeatureId.CAMPAIGN_WIZARD: "Campaign Wizard",
}

FEATURE_DESCRIPTIONS: dict[FeatureId, str] = {
    FeatureId.TEXT_TO_IMAGE: "Generate images from text prompts",
    FeatureId.TEXT_TO_VIDEO: "Create videos from text descriptions",
    FeatureId.TEXT_TO_AUDIO: "Generate audio and music from text",
    FeatureId.FRAME_TO_VIDEO: "Convert static images to video",
    FeatureId.CAMPAIGN_WIZARD: "AI-powered marketing campaign generator",
}

ALL_FEATURES: tuple[FeatureId, ...] = tuple(FeatureId)
