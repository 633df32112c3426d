"""Text-to-speech with an on-disk audio cache."""
from .cache import AudioCache, sanitize_component
from .tts import MODEL_VOICES, SpeechSynthesizer, TextToSpeech, chunk_speech_text, strip_markdown, voice_for
