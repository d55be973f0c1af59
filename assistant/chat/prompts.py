from __future__ import annotations

SYSTEM_PROMPT = (
    "You are an engineering assistant for software delivery teams. You help with repository analysis, "
    "SDLC practices, project tracking and day-to-day development questions.\n\n"
    "Tool usage:\n"
    "- Use a tool only when the question needs live data you don't already have in the conversation.\n"
    "- Don't use tools for greetings, thanks, or questions you can answer from general knowledge.\n"
    "- For an SDLC, security or code-quality review of a repository, call `analyze_repository_code` "
    "with the repository name; it returns a synthesized report you can summarize.\n"
    "- If a tool returns an `error` field, tell the user what failed and why. "
    "Don't silently switch to unrelated tools.\n"
    "- Never invent tool results, file contents, issue keys or commit SHAs.\n\n"
    "Answer style:\n"
    "- Practical and direct; lead with the answer, then the supporting detail.\n"
    "- Use headings and bullet points for long reports; keep short answers short.\n"
    "- Prioritize findings by severity and give concrete next steps.\n"
)

EXHAUSTED_REPLY = (
    "I seem to be having trouble completing your request after several attempts. "
    "Could you please try rephrasing or breaking it down?"
)

EMPTY_REPLY = "I wasn't able to produce an answer for that. Could you rephrase your request?"


def _hint_for(code: str) -> str:
    if code == "missing_api_key":
        return "API key not configured. Set ANTHROPIC_API_KEY for the Anthropic provider."
    if code == "missing_gcp_project":
        return "Set GOOGLE_CLOUD_PROJECT for Vertex AI."
    if code == "missing_gcp_location":
        return "Set GOOGLE_CLOUD_LOCATION for Vertex AI."
    if code == "missing_adc_credentials":
        return "ADC credentials missing. Configure Workload Identity / ADC."
    if code == "unauthenticated":
        return "LLM credentials rejected. Check API key or ADC setup."
    if code == "permission_denied":
        return "LLM credentials lack permission. Check project access."
    if code.startswith("sdk_import_failed:"):
        return "LLM SDK not installed. Install the matching extra (anthropic or vertex)."
    if code.startswith("model_not_found:"):
        return "Configured model not available. Check LLM_MODEL."
    if code == "provider_not_configured":
        return "LLM provider not configured. Set LLM_PROVIDER to 'vertexai' or 'anthropic'."
    if code in ("rate_limited", "timeout", "gateway_timeout", "deadline_exceeded"):
        return "The model service is busy or slow. Please try again in a moment."
    return ""


def fallback_reply(err: str) -> str:
    """Deterministic reply when the completion service cannot be used for this turn."""
    code = str(err or "").strip() or "unknown"
    lines = [
        "I couldn't reach the language model to answer this (provider not configured or provider error).",
        f"Reason: {code}",
    ]
    hint = _hint_for(code)
    if hint:
        lines.append(f"Fix: {hint}")
    return "\n".join(lines)
