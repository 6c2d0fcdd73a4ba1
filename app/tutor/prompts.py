"""
Vocab Tutor — Prompt Builder
Builds the exact LLM prompt for the opener and for each tutor turn.
The tutor's tone and nudging rules are embedded here.

RULES (in every reply prompt):
1. Reply as TUTOR only, 1-2 sentences
2. Prefer a follow-up question
3. Never show hint templates (hints are shown separately)
4. Nudge toward the vocabulary that is still missing
"""

from typing import Optional

from app.config import PROMPT_HISTORY_MESSAGES
from app.state.session import SessionSnapshot

TUTOR_SYSTEM = """You are a friendly English tutor having a dialogue with a student.
Be encouraging. Do not over-correct grammar. Keep replies short."""

OPENER_RULES = """Rules:
- Write ONLY the tutor's opening line.
- Keep it gentle and easy to answer.
- 1 short sentence + 1 simple question is ideal.
- Do NOT ask for long explanations yet.
- Do NOT mention the vocabulary list."""

REPLY_RULES = """Dialogue rules:
- Reply as TUTOR only.
- Keep it short: 1-2 sentences.
- Prefer a follow-up question to keep the dialogue going.
- Do NOT show explicit 'hint' templates.
- Be encouraging. Do not over-correct grammar."""

# Nudge per missing word. Words not listed here get no special nudge.
NUDGES = {
    "because": "If 'because' is missing, ask for a reason using a simple 'Why?' question.",
    "however": "If 'however' is missing, ask for a contrast: a downside, an exception or a different viewpoint.",
    "recommend": "If 'recommend' is missing, ask what they would recommend to a friend.",
}


def build_opener_prompt(topic: str, vocab: list[str], level: Optional[str] = None) -> str:
    lines = [
        "You are a friendly English tutor starting a dialogue with a student.",
        "The teacher provided the topic and target vocabulary, but do not force vocabulary immediately.",
        "",
        f"Topic: {topic}",
        f"Target vocabulary: {', '.join(vocab)}",
    ]
    if level and level.strip():
        lines.append(f"Student level: {level.strip()}")
    lines += ["", OPENER_RULES, "", "Now generate the opening line."]
    return "\n".join(lines)


def build_reply_prompt(
    snapshot: SessionSnapshot,
    student_text: str,
    used: list[str],
    missing: list[str],
) -> str:
    """
    Prompt for the next tutor turn.

    `used`/`missing` cover the whole session, so the tutor does not ask
    again for a word the student already used three turns ago.
    """
    history = "\n".join(
        f"{m.role.upper()}: {m.content}"
        for m in snapshot.recent(PROMPT_HISTORY_MESSAGES)
    )

    nudges = [NUDGES[w.strip().lower()] for w in missing if w.strip().lower() in NUDGES]

    lines = [
        "Your job is to guide the student to naturally use the target vocabulary over multiple turns.",
        "",
        f"Topic: {snapshot.topic}",
        f"Target vocabulary: {', '.join(snapshot.vocab)}",
        f"Already used: {', '.join(used) or '(none)'}",
        f"Missing (not used yet in this session): {', '.join(missing) or '(none)'}",
        "",
        REPLY_RULES,
    ]
    if nudges:
        lines += ["", "Nudging strategy:"] + [f"- {n}" for n in nudges]
    lines += [
        "",
        "Recent dialogue:",
        history,
        "",
        "Latest student message:",
        f"STUDENT: {student_text}",
        "",
        "Now write the next TUTOR message.",
    ]
    return "\n".join(lines)


def as_chat_messages(prompt: str) -> list[dict]:
    """Wrap a prompt for chat-completion style APIs."""
    return [
        {"role": "system", "content": TUTOR_SYSTEM},
        {"role": "user", "content": prompt},
    ]
