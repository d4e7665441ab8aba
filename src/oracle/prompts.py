"""Prompt builders for the decision oracle."""

import json

from core.models import (
    CopyPastePayload,
    FormPayload,
    NavigationPayload,
    Pattern,
    hostname,
)
from oracle.base import JudgmentRequest, NextStepRequest

SUMMARY_FORMAT = """Generate TWO descriptions addressing the user as "you", with no greeting:
1. SHORT (at most 15 words): start with an -ing verb.
2. DETAILED (40-50 words): what you are doing and why automating it helps.

Format your response as:
SHORT: <description>
DETAILED: <description>"""


def summary_prompt(pattern: Pattern) -> str:
    """Type-specific summary prompt."""
    payload = pattern.payload
    if isinstance(payload, NavigationPayload):
        steps = [f'"{hostname(step.url)}"' for step in payload.sequence[:5]]
        sequence = " -> ".join(steps)
        if len(payload.sequence) > 5:
            sequence += f" ({len(payload.sequence)} total steps)"
        return f"A user repeatedly navigates: {sequence}.\n\n{SUMMARY_FORMAT}"

    if isinstance(payload, FormPayload):
        described = []
        for f in payload.fields:
            name = f.label or f.name.replace("_", " ").replace("-", " ")
            described.append(f'{name} = "{f.sanitized_value}"' if f.sanitized_value else name)
        if not described:
            return f"A user repeatedly submits a form on {payload.domain}.\n\n{SUMMARY_FORMAT}"
        return (
            f"A user repeatedly fills a form on {payload.domain} with: "
            f"{', '.join(described)}.\n\n{SUMMARY_FORMAT}"
        )

    if isinstance(payload, CopyPastePayload):
        if not payload.pairs:
            return f"A user performs repeated copy/paste operations.\n\n{SUMMARY_FORMAT}"
        pair = payload.pairs[0]
        source = pair.source_title or hostname(pair.source_url)
        destination = pair.destination_title or hostname(pair.destination_url)
        copied = pair.copied_text or "[sensitive content]"
        return (
            f'A user repeatedly copies "{copied[:80]}" from {source} '
            f"({pair.source_element}) and pastes it into {destination} "
            f"({pair.destination_element}).\n\n{SUMMARY_FORMAT}"
        )

    raise TypeError(f"Unknown payload: {type(payload).__name__}")


def judgment_prompt(request: JudgmentRequest) -> str:
    actions = json.dumps(request.actions, indent=2, default=str)
    return f"""You analyse browser sessions to decide whether the user is repeating a workflow.

ACTIONS (ordered, oldest first):
{actions}

Decide whether these actions form one iteration of a repeatable workflow.

RESPOND WITH JSON ONLY:
{{
  "isPattern": boolean,
  "confidence": number between 0 and 100,
  "intentSummary": "at most 15 words",
  "workflow": {{"steps": [{{"action": "...", "target": "...", "value": "...", "description": "..."}}]}} | null,
  "rejectionReason": "why not a pattern" | null
}}"""


def next_step_prompt(request: NextStepRequest) -> str:
    """Adaptive replay prompt: intent first, literal steps only as illustration."""
    if request.history:
        lines = []
        for entry in request.history:
            line = f"- {entry.get('action')}: {entry.get('description', '')}"
            if entry.get("extracted_content"):
                line += f'\n  extracted: "{entry["extracted_content"]}"'
            lines.append(line)
        history = "\n".join(lines)
    else:
        history = "None - this is the first step"

    extracted = ""
    if request.extracted_contents:
        listed = "\n".join(f'{i}. "{c}"' for i, c in enumerate(request.extracted_contents, 1))
        extracted = f"EXTRACTED CONTENT (from previous pages):\n{listed}\n\n"

    failure = ""
    if request.last_error:
        failure = (
            f"PREVIOUS ACTION FAILED:\nError: {request.last_error}\n"
            f"Attempt {request.attempt}/{request.max_attempts} - try a different approach.\n\n"
        )

    elements = "\n".join(
        f'  - Selector: {el.get("selector")} -> Text: "{el.get("label") or el.get("text", "")}"'
        for el in request.elements
    ) or "  (none)"

    screenshot = "- A screenshot of the current viewport is attached.\n" if request.screenshot else ""

    return f"""You are guiding a browser automation by its USER INTENT, adapting to page changes.

WORKFLOW INTENT:
{request.intent or "No summary available"}

WORKFLOW REFERENCE (illustrative pattern, NOT literal steps to replay):
{json.dumps(request.workflow_reference, indent=2, default=str)}

EXECUTION HISTORY:
{history}

{extracted}{failure}CURRENT PAGE STATE:
- Title: "{request.page_title}"
- URL: {request.page_url}
- Interactive elements:
{elements}
{screenshot}
Use only selectors from the element list or standard CSS selectors accepted by
document.querySelector(). Use "navigate" with a full URL when the needed link is absent.
Mark isComplete=true once the intent is satisfied or when actions start repeating.

RESPOND WITH JSON ONLY:
{{
  "nextAction": "click" | "type" | "navigate" | "wait" | "extract" | "press" | "complete",
  "target": "CSS selector or URL" | null,
  "value": "text to type, key to press, or milliseconds to wait" | null,
  "reasoning": "how this advances the intent",
  "isComplete": boolean,
  "estimatedStepsRemaining": number | null
}}"""
