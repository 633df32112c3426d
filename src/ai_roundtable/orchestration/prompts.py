"""
Round prompts and the essay-style system prompt.

Round 1 sends the augmented prompt unchanged. Round 2 shows each model its
own Round-1 answer plus every other model's answer, and asks it to react.
Other models' answers are wrapped as quoted content so a Round-1 answer
cannot issue instructions to the next round.
"""

from dataclasses import dataclass

from ..security.prompt_guard import wrap_user_content

SHARED_SYSTEM_PROMPT = (
    "You are a participant in a published multi-model conversation. Write in "
    "flowing, essay-style prose, the kind you'd find in The Economist or The "
    "Atlantic. Develop your argument through connected paragraphs, not bullet "
    "points or numbered lists. You may occasionally use a brief structured "
    "element (a short comparison, a key enumeration) when it genuinely serves "
    "clarity, but the default mode is always discursive prose.\n\n"
    "Think deeply and carefully; the questions asked can be complex and "
    "nuanced. Draw on the most up-to-date knowledge available to you."
)

ROUND_ADDITIONS = {
    1: "Aim for roughly 600-800 words.",
    2: "Be direct and substantive; avoid generic praise. Aim for roughly 300-500 words.",
}

NO_INITIAL_RESPONSE = "(no initial response)"
MODEL_RESPONSE_LABEL = "MODEL_RESPONSE"


@dataclass
class Round1Response:
    """A Round-1 answer as seen by Round-2 prompts (model is the display name)."""

    model: str
    content: str


def build_system_prompt(round_number: int) -> str:
    return f"{SHARED_SYSTEM_PROMPT}\n\n{ROUND_ADDITIONS[round_number]}"


def build_round1_prompt(augmented_prompt: str) -> str:
    return augmented_prompt


def build_round2_prompt(
    augmented_prompt: str,
    model_name: str,
    round1_responses: list[Round1Response],
) -> str:
    """Build the reaction prompt for one model; its own answer is never listed among the others."""
    others = "\n\n".join(
        f"### {r.model}\n{wrap_user_content(r.content, label=MODEL_RESPONSE_LABEL)}"
        for r in round1_responses
        if r.model != model_name
    )
    own = next((r.content for r in round1_responses if r.model == model_name), None)

    return (
        f"The original topic was:\n\n{augmented_prompt}\n\n"
        f"Your initial response was:\n{own if own is not None else NO_INITIAL_RESPONSE}\n\n"
        f"Here are the other models' initial responses:\n\n{others}\n\n"
        "Now react to what the others said. You may agree, disagree, build on "
        "ideas, or offer new perspectives. Be direct and substantive; avoid "
        "generic praise. Aim for roughly 300-500 words. This is Round 2 of a "
        "published conversation."
    )
