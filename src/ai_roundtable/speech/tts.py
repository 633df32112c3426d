"""
Text-to-speech for roundtable responses.

Responses are written in markdown, so formatting is stripped before the text
is sent to OpenAI's speech endpoint. Each model reads with its own voice.
Text longer than the endpoint's input limit is synthesized sentence-chunk
by sentence-chunk and the MP3 segments are concatenated.

Usage:
    tts = TextToSpeech(SpeechSynthesizer(api_key), AudioCache(settings.audio_dir))
    audio = await tts.speak(text, "claude", conversation_id=conv.id, round_number=1)
"""

import logging
import re
import textwrap

import openai

from ..llm.models import normalize_model_key
from .cache import AudioCache

logger = logging.getLogger(__name__)

TTS_MODEL = "gpt-4o-mini-tts"
TTS_INSTRUCTIONS = "Read naturally in a conversational tone."
TTS_FORMAT = "mp3"
TTS_MAX_INPUT = 4096
DEFAULT_VOICE = "alloy"

MODEL_VOICES = {
    "claude": "coral",
    "gpt": "nova",
    "gemini": "sage",
    "grok": "ash",
}

# Applied in order: ** before *, images before links
_MARKDOWN_RULES = [
    (re.compile(r"```[\w]*\n?"), ""),
    (re.compile(r"^[-*]{3,}$", re.M), ""),
    (re.compile(r"!\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"\[([^\]]*)\]\([^)]*\)"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.M), ""),
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"__(.+?)__"), r"\1"),
    (re.compile(r"_(.+?)_"), r"\1"),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"^>\s+", re.M), ""),
    (re.compile(r"^[-*]\s+", re.M), ""),
    (re.compile(r"^\d+\.\s+", re.M), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
]

_SENTENCES = re.compile(r"[^.!?]*(?:[.!?]+\s*|$)")


def voice_for(model: str) -> str:
    return MODEL_VOICES.get(normalize_model_key(model), DEFAULT_VOICE)


def strip_markdown(text: str) -> str:
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def chunk_speech_text(text: str, max_length: int = TTS_MAX_INPUT) -> list[str]:
    """Group whole sentences into chunks of at most max_length characters."""
    if len(text) <= max_length:
        return [text]

    chunks = []
    current = ""
    for sentence in (s for s in _SENTENCES.findall(text) if s):
        if len(sentence) > max_length:
            if current:
                chunks.append(current.rstrip())
                current = ""
            chunks.extend(textwrap.wrap(sentence, max_length))
            continue
        if current and len(current) + len(sentence) > max_length:
            chunks.append(current.rstrip())
            current = sentence
        else:
            current += sentence
    if current.strip():
        chunks.append(current.rstrip())
    return chunks


class SpeechSynthesizer:
    """Thin wrapper over OpenAI's speech endpoint."""

    def __init__(self, api_key: str, timeout: float = 120.0):
        self._api_key = api_key
        self._timeout = timeout
        self._client: openai.AsyncOpenAI | None = None

        if not api_key:
            logger.warning("[TTS] No OpenAI API key configured -- synthesis will fail")

    def _get_client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def synthesize(self, text: str, voice: str) -> bytes:
        segments = []
        for chunk in chunk_speech_text(text):
            response = await self._get_client().audio.speech.create(
                model=TTS_MODEL,
                voice=voice,
                input=chunk,
                instructions=TTS_INSTRUCTIONS,
                response_format=TTS_FORMAT,
            )
            segments.append(await response.aread())
        return b"".join(segments)


class TextToSpeech:
    """Markdown stripping, voice selection and the on-disk cache around synthesis."""

    def __init__(self, synthesizer: SpeechSynthesizer, cache: AudioCache):
        self._synthesizer = synthesizer
        self._cache = cache

    @property
    def cache(self) -> AudioCache:
        return self._cache

    async def speak(
        self,
        text: str,
        model: str,
        conversation_id: str | None = None,
        round_number: int | None = None,
    ) -> bytes:
        """
        Return MP3 audio for a response.

        With both conversation_id and round_number the cache is consulted
        first; a miss is synthesized and the write scheduled in the background.
        The cache is keyed by the triple alone, so text must be the stored
        content of that response. Without them the cache is never touched.
        """
        cacheable = bool(conversation_id) and round_number is not None
        if cacheable:
            cached = await self._cache.read(conversation_id, round_number, model)
            if cached is not None:
                return cached

        clean = strip_markdown(text)
        audio = await self._synthesizer.synthesize(clean, voice_for(model))
        logger.info(f"[TTS] Synthesized {len(clean)} chars for {model} ({len(audio)} bytes)")

        if cacheable:
            self._cache.write_in_background(conversation_id, round_number, model, audio)
        return audio
