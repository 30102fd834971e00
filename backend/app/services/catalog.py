"""Selectable models and voices offered to API callers."""

from __future__ import annotations

from app.schemas.config import AppConfig, CatalogOption, ModelCatalog

SCRIPT_MODELS = [
    ("gpt-4o-mini", "GPT-4o mini", "Fast and efficient for most scripts"),
    ("gpt-4o", "GPT-4o", "Most capable model for complex scripts"),
    ("gpt-4.1-mini", "GPT-4.1 mini", "Longer context, balanced cost"),
]

SPEECH_MODELS = [
    ("gpt-4o-mini-tts", "GPT-4o mini TTS", "Steerable narration"),
    ("tts-1", "TTS-1", "Low latency"),
    ("tts-1-hd", "TTS-1 HD", "Higher audio quality"),
]

IMAGE_MODELS = [
    ("gpt-image-1", "GPT Image 1", "Best prompt adherence"),
    ("dall-e-3", "DALL-E 3", "Legacy image model"),
]

VIDEO_MODELS = [
    ("kling", "Kling", "Image-to-video through the task API"),
]

VOICES = ["alloy", "ash", "ballad", "coral", "echo", "fable", "nova", "onyx", "sage", "shimmer"]


def _options(choices: list[tuple[str, str, str]], configured: str) -> list[CatalogOption]:
    options = [
        CatalogOption(value=value, label=label, description=description, is_default=value == configured)
        for value, label, description in choices
    ]
    # A model set in config but unknown here is still offered, first.
    if configured and not any(option.is_default for option in options):
        options.insert(
            0, CatalogOption(value=configured, label=configured, description="Configured model", is_default=True)
        )
    return options


def model_catalog(config: AppConfig) -> ModelCatalog:
    return ModelCatalog(
        script=_options(SCRIPT_MODELS, config.script.model),
        speech=_options(SPEECH_MODELS, config.speech.model),
        image=_options(IMAGE_MODELS, config.image.model),
        video=_options(VIDEO_MODELS, config.video.model),
    )


def voice_catalog(config: AppConfig) -> list[CatalogOption]:
    voices = list(VOICES)
    default = config.speech.default_voice
    if default and default not in voices:
        voices.insert(0, default)
    return [CatalogOption(value=voice, label=voice.title(), is_default=voice == default) for voice in voices]
