"""Prompt assembly for the AI responder."""

from .assembler import MAX_INSTRUCTION_CHARS, AssembledPrompt, assemble, bound_turns

__all__ = ["AssembledPrompt", "MAX_INSTRUCTION_CHARS", "assemble", "bound_turns"]
