"""
Export formatters -- Markdown, plain text and a 280-character thread.

Pure functions over a loaded Conversation: no network, no storage.
"""

import re

from .llm.models import get_model_name
from .storage.models import Conversation

THREAD_MAX_LEN = 280
THREAD_TITLE_SUFFIX = " — AI Roundtable Discussion (thread)"
THREAD_ROUND2_SEPARATOR = "Round 2 — Reactions:"
ROUNDS = (1, 2)

_SENTENCE_END = re.compile(r"[.!?][\"')\]]*(?=\s)")


def export_markdown(conversation: Conversation) -> str:
    lines = [
        f"# {conversation.raw_input}",
        "",
        f"> {conversation.augmented_prompt}",
        "",
    ]
    for round_number in ROUNDS:
        lines += [f"## Round {round_number}", ""]
        for response in conversation.round_responses(round_number):
            lines += [f"### {get_model_name(response.model)}", "", response.content, ""]
            if response.sources:
                lines.append("Sources:")
                lines += [f"- [{s.title or s.url}]({s.url})" for s in response.sources]
                lines.append("")
    return "\n".join(lines)


def export_text(conversation: Conversation) -> str:
    lines = [conversation.raw_input, "", conversation.augmented_prompt, ""]
    for round_number in ROUNDS:
        lines += [f"--- Round {round_number} ---", ""]
        for response in conversation.round_responses(round_number):
            lines += [f"[{get_model_name(response.model)}]", response.content, ""]
    return "\n".join(lines)


def export_thread(conversation: Conversation) -> list[str]:
    """Split the conversation into posts of at most 280 characters each."""
    posts = [truncate_at_word(f"{conversation.raw_input}{THREAD_TITLE_SUFFIX}", THREAD_MAX_LEN)]

    for response in conversation.round_responses(1):
        prefix = f"{get_model_name(response.model)}:\n"
        posts += [prefix + chunk for chunk in chunk_thread_text(response.content, THREAD_MAX_LEN - len(prefix))]

    posts.append(THREAD_ROUND2_SEPARATOR)

    for response in conversation.round_responses(2):
        prefix = f"{get_model_name(response.model)} reacts:\n"
        posts += [prefix + chunk for chunk in chunk_thread_text(response.content, THREAD_MAX_LEN - len(prefix))]

    return posts


def truncate_at_word(text: str, max_len: int) -> str:
    """Cut text to max_len on a word boundary."""
    if len(text) <= max_len:
        return text
    cut = text.rfind(" ", 0, max_len + 1)
    if cut <= 0:
        return text[:max_len]
    return text[:cut].rstrip()


def chunk_thread_text(text: str, max_len: int) -> list[str]:
    """
    Split text into chunks of at most max_len characters.

    Each chunk ends at the last sentence end that fits, unless that would
    leave the chunk less than half full; then it ends at the last space.
    A word is only hard-split when it alone is longer than max_len.
    Whitespace runs (including newlines) collapse to single spaces.
    """
    text = " ".join(text.split())
    if not text:
        return []
    if len(text) <= max_len:
        return [text]

    chunks = []
    remaining = text
    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break

        window = remaining[: max_len + 1]
        split_at = -1
        for match in _SENTENCE_END.finditer(window):
            if match.end() <= max_len:
                split_at = match.end()
        if split_at < max_len // 2:
            split_at = window.rfind(" ")
        if split_at <= 0:
            split_at = max_len

        chunks.append(remaining[:split_at].rstrip())
        remaining = remaining[split_at:].lstrip()

    return chunks
