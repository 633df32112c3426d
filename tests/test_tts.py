"""Text-to-speech tests -- markdown stripping, chunking, voices, and the audio cache."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ai_roundtable.speech import (
    AudioCache,
    SpeechSynthesizer,
    TextToSpeech,
    chunk_speech_text,
    sanitize_component,
    strip_markdown,
    voice_for,
)
from ai_roundtable.speech.tts import TTS_MAX_INPUT, TTS_MODEL


@pytest.fixture
def synthesizer():
    synth = AsyncMock()
    synth.synthesize.return_value = b"ID3-fake-mp3"
    return synth


@pytest.fixture
def cache(tmp_path):
    return AudioCache(tmp_path / "audio")


class TestStripMarkdown:
    @pytest.mark.parametrize("raw, clean", [
        ("## Heading", "Heading"),
        ("**bold** and *italic*", "bold and italic"),
        ("__bold__ and _italic_", "bold and italic"),
        ("Use `pip install`", "Use pip install"),
        ("[OpenAI](https://openai.com)", "OpenAI"),
        ("![chart](https://x/y.png)", "chart"),
        ("> quoted", "quoted"),
        ("- item one\n- item two", "item one\nitem two"),
        ("1. first\n2. second", "first\nsecond"),
        ("```python\nprint(1)\n```", "print(1)"),
        ("above\n\n---\n\nbelow", "above\n\nbelow"),
    ])
    def test_rules(self, raw, clean):
        assert strip_markdown(raw) == clean

    def test_mixed(self):
        text = "## **Bold Heading**\n\n- Item with `code`\n- [Link](url)"
        assert strip_markdown(text) == "Bold Heading\n\nItem with code\nLink"


class TestChunking:
    def test_short_text_single_chunk(self):
        assert chunk_speech_text("One sentence.") == ["One sentence."]

    def test_splits_on_sentences(self):
        text = " ".join(f"Sentence number {i} is here." for i in range(20))
        chunks = chunk_speech_text(text, max_length=50)
        assert len(chunks) > 1
        assert all(len(c) <= 50 for c in chunks)
        assert " ".join(chunks) == text

    def test_oversize_sentence_wrapped(self):
        text = "word " * 40
        chunks = chunk_speech_text(text.strip(), max_length=30)
        assert all(len(c) <= 30 for c in chunks)
        assert " ".join(chunks).split() == text.split()


class TestVoices:
    def test_model_voices(self):
        assert voice_for("claude") == "coral"
        assert voice_for("gpt") == "nova"
        assert voice_for("gemini") == "sage"
        assert voice_for("grok") == "ash"

    def test_alias_shares_voice(self):
        assert voice_for("gpt4") == "nova"

    def test_default_voice(self):
        assert voice_for("llama") == "alloy"


class TestAudioCache:
    def test_path_layout(self, cache, tmp_path):
        assert cache.path_for("conv-1", 2, "claude") == tmp_path / "audio" / "conv-1" / "2-claude.mp3"

    def test_distinct_triples_never_collide(self, cache):
        keys = [
            ("a/b", 1, "claude"), ("a_b", 1, "claude"), ("a?b", 1, "claude"),
            ("a_b", 2, "claude"), ("a_b", 1, "gpt"), ("", 1, "claude"), ("_", 1, "claude"),
        ]
        paths = {cache.path_for(*key) for key in keys}
        assert len(paths) == len(keys)

    def test_sanitize_keeps_safe_values(self):
        assert sanitize_component("550e8400-e29b_41d4") == "550e8400-e29b_41d4"
        assert "/" not in sanitize_component("../../etc/passwd")

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, cache):
        assert await cache.read("c1", 1, "grok") is None
        await cache.write_in_background("c1", 1, "grok", b"audio")
        assert await cache.read("c1", 1, "grok") == b"audio"

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "audio"
        blocker.write_text("not a directory")
        cache = AudioCache(blocker)
        task = cache.write_in_background("c1", 1, "grok", b"audio")
        await cache.wait_for_writes()
        assert task.done() and task.exception() is None
        assert blocker.read_text() == "not a directory"


class TestTextToSpeech:
    @pytest.mark.asyncio
    async def test_repeat_request_served_from_disk(self, synthesizer, cache):
        tts = TextToSpeech(synthesizer, cache)
        first = await tts.speak("Hello.", "claude", conversation_id="c1", round_number=1)
        await cache.wait_for_writes()
        second = await tts.speak("Hello.", "claude", conversation_id="c1", round_number=1)

        assert first == second == b"ID3-fake-mp3"
        assert synthesizer.synthesize.await_count == 1

    @pytest.mark.asyncio
    async def test_different_round_synthesized_separately(self, synthesizer, cache):
        tts = TextToSpeech(synthesizer, cache)
        await tts.speak("Hello.", "claude", conversation_id="c1", round_number=1)
        await cache.wait_for_writes()
        await tts.speak("Hello.", "claude", conversation_id="c1", round_number=2)
        assert synthesizer.synthesize.await_count == 2

    @pytest.mark.asyncio
    async def test_without_ids_cache_untouched(self, synthesizer, cache, tmp_path):
        tts = TextToSpeech(synthesizer, cache)
        await tts.speak("Hello.", "gpt")
        await tts.speak("Hello.", "gpt")
        await cache.wait_for_writes()

        assert synthesizer.synthesize.await_count == 2
        assert not (tmp_path / "audio").exists()

    @pytest.mark.asyncio
    async def test_markdown_stripped_and_voice_selected(self, synthesizer, cache):
        tts = TextToSpeech(synthesizer, cache)
        await tts.speak("## **Fusion**", "gemini")
        synthesizer.synthesize.assert_awaited_once_with("Fusion", "sage")


class TestSpeechSynthesizer:
    @pytest.mark.asyncio
    async def test_long_text_concatenated(self):
        speech_response = MagicMock()
        speech_response.aread = AsyncMock(side_effect=[b"part1", b"part2"])
        client = MagicMock()
        client.audio.speech.create = AsyncMock(return_value=speech_response)

        synth = SpeechSynthesizer(api_key="sk-test")
        synth._client = client
        text = "A short sentence goes here. " * ((TTS_MAX_INPUT // 28) + 10)
        audio = await synth.synthesize(text.strip(), "ash")

        assert audio == b"part1part2"
        assert client.audio.speech.create.await_count == 2
        kwargs = client.audio.speech.create.call_args.kwargs
        assert kwargs["model"] == TTS_MODEL
        assert kwargs["voice"] == "ash"
        assert kwargs["response_format"] == "mp3"
        assert len(kwargs["input"]) <= TTS_MAX_INPUT
