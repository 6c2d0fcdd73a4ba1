"""
Vocab Tutor — Session Value Objects

Plain dataclasses handed between the repositories, the services and the LLM
layer. None of them hold a DB connection; they are safe to keep after the
transaction that produced them has closed.

Payload rules:
- TutorReply.to_dict() is exactly what the idempotency ledger stores and what
  a replayed request returns. Key order is fixed so replays serialize
  byte-for-byte the same.
- SessionSnapshot.messages may be a bounded tail of the conversation
  (see LLM_CONTEXT_MESSAGES); it is always in seq order.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class ChatMessage:
    role: str      # "tutor" | "student"
    content: str


@dataclass
class SessionSnapshot:
    """Session fields plus (a window of) its messages."""
    id: str
    assignment_id: str
    join_key: str
    topic: str
    vocab: list = field(default_factory=list)
    level: Optional[str] = None
    messages: list = field(default_factory=list)   # list[ChatMessage]

    def recent(self, max_messages: int) -> list:
        """Last N messages, oldest first."""
        if max_messages <= 0:
            return []
        return self.messages[-max_messages:]

    def to_dict(self) -> dict:
        return {
            "session_id": self.id,
            "assignment_id": self.assignment_id,
            "join_key": self.join_key,
            "topic": self.topic,
            "vocab": list(self.vocab),
            "level": self.level,
            "messages": [{"role": m.role, "content": m.content} for m in self.messages],
        }


@dataclass
class SessionSummary:
    session_id: str
    assignment_id: str
    join_key: str
    topic: str
    vocab: list
    message_count: int


@dataclass
class AssignmentView:
    id: str
    join_key: str
    topic: str
    vocab: list
    level: Optional[str] = None


@dataclass
class TutorReply:
    """
    What the student sees after posting a message.

    vocab_used and vocab_missing partition the session vocabulary and are
    computed over every student turn so far, not just the latest one.
    """
    tutor_text: str
    hint: Optional[str] = None
    vocab_used: list = field(default_factory=list)
    vocab_missing: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "tutor_text": self.tutor_text,
            "hint": self.hint,
            "vocab_used": list(self.vocab_used),
            "vocab_missing": list(self.vocab_missing),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TutorReply":
        """Deserialize a stored payload. Raises KeyError if tutor_text is missing."""
        return cls(
            tutor_text=data["tutor_text"],
            hint=data.get("hint"),
            vocab_used=list(data.get("vocab_used") or []),
            vocab_missing=list(data.get("vocab_missing") or []),
        )
