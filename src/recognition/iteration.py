"""Repeat-unit extraction and template descriptions."""

from core.models import (
    CopyPastePayload,
    FormPayload,
    NavigationPayload,
    Pattern,
    hostname,
)


def extract_iteration(urls: list[str]) -> list[str]:
    """
    One repeat unit of a navigation sequence.

    Walks forward from the first URL and stops just before the sequence
    returns to the starting hostname after visiting at least one other
    hostname. ``[A, B, C, A, B, C]`` yields ``[A, B, C]``. Sequences that
    never return are returned whole.
    """
    if not urls:
        return []

    start_host = hostname(urls[0])
    iteration = [urls[0]]
    left_start = False
    for url in urls[1:]:
        host = hostname(url)
        if host == start_host and left_start:
            break
        if host != start_host:
            left_start = True
        iteration.append(url)
    return iteration


def template_summary(pattern: Pattern) -> str:
    """Deterministic intent phrase used when no oracle summary is cached."""
    payload = pattern.payload
    if isinstance(payload, NavigationPayload):
        domains = list(dict.fromkeys(hostname(u) for u in extract_iteration(payload.urls())))
        if len(domains) == 1:
            return f"navigating through {domains[0]}"
        if len(domains) == 2:
            return f"navigating between {domains[0]} and {domains[1]}"
        if domains:
            return f"navigating across {len(domains)} different sites"
    elif isinstance(payload, FormPayload):
        count = len(payload.fields)
        noun = "field" if count == 1 else "fields"
        return f"filling out forms on {payload.domain} with {count} {noun}"
    elif isinstance(payload, CopyPastePayload):
        return "copying and pasting content between pages"
    return "performing a repeated workflow"


def notification_message(pattern: Pattern, confidence: float) -> str:
    """Notification body: cached summary or a typed fallback."""
    if pattern.intent_summary:
        return pattern.intent_summary
    label = {
        "navigation": "Navigation",
        "form": "Form",
        "copy-paste": "Copy/Paste",
    }[pattern.type.value]
    return f"{label} pattern detected with {confidence:.0f}% confidence"
