"""Token estimation and text heuristics used for context budgeting.

All counts here are estimates (~4 characters per token). They are used for
budgeting and logging only and must not be treated as hard model limits.
"""

import math
import re

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "..."
DEFAULT_THEME = "General conversation"

# Advisory per-section budgets for the assembled context
TOKEN_BUDGET = {
    "system_prompt": 200,
    "profile_summary": 100,
    "journal_summary": 250,
    "habit_task_summary": 200,
    "memory_summary": 400,
    "recent_messages": 800,
    "user_message": 100,
    "total_context": 2050,
}

# Ordered: earlier themes win ties
THEME_KEYWORDS: dict[str, list[str]] = {
    "work stress": ["work", "job", "boss", "deadline", "presentation", "meeting", "project"],
    "anxiety management": ["anxiety", "anxious", "worried", "nervous", "panic", "stress"],
    "self-compassion": ["self-compassion", "kind to myself", "forgive", "accept", "gentle"],
    "relationships": ["relationship", "partner", "friend", "family", "social", "conflict"],
    "sleep issues": ["sleep", "insomnia", "tired", "rest", "fatigue", "exhausted"],
    "exercise and health": ["exercise", "workout", "fitness", "health", "physical", "body"],
    "mindfulness practice": ["meditation", "mindfulness", "breathing", "present", "awareness"],
    "goal setting": ["goal", "achievement", "accomplish", "plan", "future", "aspiration"],
    "emotional processing": ["feel", "emotion", "sad", "happy", "angry", "grief", "joy"],
    "coping strategies": ["cope", "manage", "technique", "strategy", "tool", "method"],
}

_THEME_PATTERNS: dict[str, list[re.Pattern]] = {
    theme: [re.compile(rf"\b{re.escape(keyword)}\w*\b", re.IGNORECASE) for keyword in keywords]
    for theme, keywords in THEME_KEYWORDS.items()
}

_INJECTION_PATTERNS = [
    re.compile(r"ignore previous instructions", re.IGNORECASE),
    re.compile(r"system:", re.IGNORECASE),
    re.compile(r"assistant:", re.IGNORECASE),
    re.compile(r"\[INST\]", re.IGNORECASE),
    re.compile(r"\[/INST\]", re.IGNORECASE),
]


def estimate_tokens(text: str) -> int:
    """Estimate the token count of a string (~4 characters per token).

    Args:
        text: Text to estimate

    Returns:
        Estimated token count, 0 for empty text
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def truncate_to_budget(text: str, max_tokens: int) -> str:
    """Truncate text to roughly fit a token budget.

    Args:
        text: Text to truncate
        max_tokens: Token budget

    Returns:
        The original text if it fits, otherwise the character-equivalent
        prefix followed by a truncation marker
    """
    if estimate_tokens(text) <= max_tokens:
        return text
    return text[: max(0, max_tokens) * CHARS_PER_TOKEN] + TRUNCATION_MARKER


def extract_theme(text: str) -> str:
    """Derive a coarse theme label from keyword frequency.

    Works offline so a node always gets a theme even when the external
    summarization call fails.

    Args:
        text: Conversation snippet

    Returns:
        Best matching theme label, or "General conversation"
    """
    if not text:
        return DEFAULT_THEME

    best_theme = DEFAULT_THEME
    best_count = 0
    for theme, patterns in _THEME_PATTERNS.items():
        count = sum(len(pattern.findall(text)) for pattern in patterns)
        if count > best_count:
            best_theme, best_count = theme, count
    return best_theme


def sanitize_input(text: str) -> str:
    """Remove common prompt-injection markers from user input."""
    sanitized = text
    for pattern in _INJECTION_PATTERNS:
        sanitized = pattern.sub("", sanitized)
    return sanitized.strip()
