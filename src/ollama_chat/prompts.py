"""System prompt presets."""

SYSTEM_PROMPTS: dict[str, str] = {
    "default": "",
    "coder": (
        "You are an expert programmer. Provide clear, concise code examples "
        "and explanations. Focus on best practices, clean code, and "
        "efficient solutions."
    ),
    "teacher": (
        "You are a patient teacher. Explain concepts clearly with examples "
        "and analogies. Break down complex topics into understandable parts."
    ),
    "creative": (
        "You are a creative writer. Be imaginative and engaging in your "
        "responses. Use vivid descriptions and interesting narratives."
    ),
}


def resolve_system_prompt(key: str) -> str | None:
    """Return the preset text for *key*, or None for the empty default.

    Raises:
        KeyError: *key* is not a known preset.
    """
    if key not in SYSTEM_PROMPTS:
        raise KeyError(f"Unknown system prompt preset: {key!r}")
    return SYSTEM_PROMPTS[key] or None
