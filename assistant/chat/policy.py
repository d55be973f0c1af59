from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


@dataclass(frozen=True)
class ChatPolicy:
    # Loop bound: model calls per turn
    max_iterations: int = 5

    # Number of stored display messages fed back to the model as context.
    # Persisted history is not windowed; it grows until the session TTL expires.
    context_window: int = 5

    # Session transcript lifetime, refreshed on every completed turn
    session_ttl_seconds: int = 1800

    # Used when a caller does not send a session id
    default_session_id: str = "default-session"

    temperature: float = 0.1
    system_prompt: Optional[str] = None


def load_chat_policy() -> ChatPolicy:
    """
    Load chat loop policy from env.

    Recognized vars:
    - CHAT_MAX_ITERATIONS=5        (1..10)
    - CHAT_CONTEXT_WINDOW=5        (0..50 display messages)
    - CHAT_SESSION_TTL_SECONDS=1800 (60..86400)
    - CHAT_DEFAULT_SESSION_ID=default-session
    - CHAT_TEMPERATURE=0.1
    - CHAT_SYSTEM_PROMPT=...       (optional override)
    """
    max_iterations = max(1, min(_env_int("CHAT_MAX_ITERATIONS", 5), 10))
    context_window = max(0, min(_env_int("CHAT_CONTEXT_WINDOW", 5), 50))
    ttl = max(60, min(_env_int("CHAT_SESSION_TTL_SECONDS", 1800), 86400))
    temperature = max(0.0, min(_env_float("CHAT_TEMPERATURE", 0.1), 1.0))
    default_session = (os.getenv("CHAT_DEFAULT_SESSION_ID") or "").strip() or "default-session"
    system_prompt = (os.getenv("CHAT_SYSTEM_PROMPT") or "").strip() or None

    return ChatPolicy(
        max_iterations=max_iterations,
        context_window=context_window,
        session_ttl_seconds=ttl,
        default_session_id=default_session,
        temperature=temperature,
        system_prompt=system_prompt,
    )
