"""
Roundtable orchestration.

  - RoundTable: two-round broadcast (independent answers, then reactions),
    buffered via run_round() or streamed via stream_conversation()
  - prompts: essay-style system prompt and Round 1 / Round 2 prompt builders
"""
from .prompts import Round1Response, build_round1_prompt, build_round2_prompt, build_system_prompt
from .round_table import (
    ModelResult,
    RoundEvent,
    RoundPreconditionError,
    RoundResult,
    RoundTable,
    RoundTableConfig,
)
