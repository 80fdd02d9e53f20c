"""Prompt variants for vision-language backends.

One pipeline, one parameterized prompt: variants differ only in how much they
ask the model to read off the display.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PromptVariant:
    name: str
    text: str


SHORT_PROMPT = PromptVariant(
    name="short",
    text=(
        "Analyze this dive computer image. Extract:\n"
        "1. Max depth (with its unit, m or ft)\n"
        "2. Dive time (MM:SS)\n"
        "3. Water temperature (with its unit, °C or °F)\n\n"
        'Return JSON: {"extractedData": {"maxDepth": "45.2m", "diveTime": "MM:SS", '
        '"temperature": "27°C"}, "confidence": 0.0-1.0}'
    ),
)

DETAILED_PROMPT = PromptVariant(
    name="detailed",
    text=(
        "You are an expert dive computer analyst. Examine this dive computer display "
        "and extract the values that are ACTUALLY visible.\n\n"
        "Rules:\n"
        "- Read only what is clearly visible on the screen. Never guess or invent values.\n"
        "- If a value is blurry or missing, use null.\n"
        "- Keep the unit shown on the display (m/ft, °C/°F).\n"
        "- Look for labels like MAX, DEPTH, TIME, DIVE T, TEMP and a dive date.\n"
        "- Times are usually MM:SS or H:MM:SS.\n\n"
        "Return valid JSON only:\n"
        "{\n"
        '  "extractedData": {\n'
        '    "maxDepth": "number with unit or null",\n'
        '    "diveTime": "MM:SS or null",\n'
        '    "temperature": "number with unit or null",\n'
        '    "date": "date exactly as displayed or null",\n'
        '    "visibility": "clear|blurry|dark|unreadable"\n'
        "  },\n"
        '  "confidence": 0.0-1.0\n'
        "}"
    ),
)

PROMPT_VARIANTS: dict[str, PromptVariant] = {
    SHORT_PROMPT.name: SHORT_PROMPT,
    DETAILED_PROMPT.name: DETAILED_PROMPT,
}


def build_instruction(variant: str, prompt_hint: str | None = None) -> str:
    """Return the full instruction for `variant`, with the caller's hint appended."""
    try:
        base = PROMPT_VARIANTS[variant].text
    except KeyError as exc:
        raise ValueError(f"Unknown prompt variant: {variant}") from exc
    hint = (prompt_hint or "").strip()
    if hint:
        return f"{base}\n\nAdditional instructions from the diver: {hint}"
    return base
