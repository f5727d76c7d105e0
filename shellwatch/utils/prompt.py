import json

SYSTEM_PROMPT = (
    "You are shellwatch, an assistant that explains why a shell command failed "
    "and how the developer could fix it. You never run anything yourself. "
    "Respond ONLY with strict JSON."
)

TEMPLATE = """A command run in a developer's local shell failed. Explain the most likely causes
and propose concrete fixes the developer can choose to apply.

STRICT OUTPUT: Return ONLY JSON matching this schema:
{{
  "suggestions": [{{"title": "", "description": "", "actionable_snippet": "", "confidence": 0.0,
                    "type": "command|optimization|shortcut|warning|tip", "priority": "low|medium|high"}}]
}}

Guidelines:
- Suggestions are shown to a human; they are never executed automatically.
- Keep 1-4 suggestions, most likely cause first.
- confidence is your probability (0.0-1.0) that the suggestion addresses the failure.
- Do not repeat the earlier findings listed in the input; build on them.
- Secrets were replaced with [REDACTED]; never ask for or invent their values.

INPUT:
{input_blob}
"""


def build_prompt(model_input) -> str:
    """`model_input` is an already-sanitized ModelInput."""
    ctx = model_input.context
    compact = {
        "command": " ".join([ctx.command] + list(ctx.args)),
        "exit_code": ctx.exit_code,
        "cwd": ctx.cwd,
        "stderr": ctx.stderr,
        "stdout": ctx.stdout[-2000:],
        "recent_commands": [
            {"cmd": " ".join([p.command] + list(p.args)), "exit": p.exit_code}
            for p in ctx.previous_commands
        ],
        "repo": model_input.repo_metadata.model_dump(exclude_none=True),
        "earlier_findings": [s.title for s in model_input.previous_suggestions],
    }
    return TEMPLATE.format(input_blob=json.dumps(compact, ensure_ascii=False))
