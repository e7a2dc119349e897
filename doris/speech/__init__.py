"""Speech synthesis adapters."""

from doris.speech.synthesizer import (
    ElevenLabsSynthesizer,
    FallbackSynthesizer,
    LocalCommandSynthesizer,
    SpeechSynthesizer,
    build_synthesizer,
)

__all__ = [
    "ElevenLabsSynthesizer",
    "FallbackSynthesizer",
    "LocalCommandSynthesizer",
    "SpeechSynthesizer",
    "build_synthesizer",
]
