"""
Per-conversation context state and update request/result types.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from codecontext.utils.timeutil import utcnow


class ConversationPhase(str, enum.Enum):
    """Lifecycle of a conversation's active context."""

    EMPTY = "empty"
    ACTIVE = "active"
    FINALIZED = "finalized"


class IntegrationLevel(str, enum.Enum):
    """How much existing context survives a topic shift or intent transition."""

    MINIMAL = "minimal"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


@dataclass
class Focus:
    """What the conversation is currently about (a file, an entity, ...)."""

    kind: str
    identifier: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.kind, "identifier": self.identifier}


@dataclass
class ContextItem:
    """An item recently brought into the conversation's context."""

    type: str  # code_entity, project_document, code_change, message, ...
    name: str
    path: Optional[str] = None
    content_type: str = "code"  # code or text
    priority: float = 0.5
    timestamp: datetime = field(default_factory=utcnow)
    related_to: Optional[str] = None
    id: Optional[str] = None

    @property
    def identity(self) -> tuple:
        return (self.type, self.id or self.path or self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "content_type": self.content_type,
            "priority": self.priority,
            "timestamp": self.timestamp.isoformat(),
            "related_to": self.related_to,
        }


@dataclass
class ActiveContextState:
    """Process-local working state of one conversation."""

    conversation_id: str
    phase: ConversationPhase = ConversationPhase.EMPTY
    focus: Optional[Focus] = None
    recent_context_items: list[ContextItem] = field(default_factory=list)
    current_intent: Optional[str] = None
    current_topic_id: Optional[str] = None
    last_message_id: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def clear(self) -> None:
        """Drop focus, items and intent; phase and topic are untouched."""
        self.focus = None
        self.recent_context_items = []
        self.current_intent = None
        self.updated_at = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "conversation_id": self.conversation_id,
            "phase": self.phase.value,
            "focus": self.focus.to_dict() if self.focus else None,
            "recent_context_items": [item.to_dict() for item in self.recent_context_items],
            "current_intent": self.current_intent,
            "current_topic_id": self.current_topic_id,
        }


@dataclass
class Message:
    role: str
    content: str
    timestamp: Optional[datetime] = None


@dataclass
class CodeChange:
    """A file edited since the last update."""

    path: str
    changed_lines: int = 0
    change_type: str = "modified"
    entity_id: Optional[str] = None


@dataclass
class ContextUpdateRequest:
    conversation_id: str
    new_messages: list[Message] = field(default_factory=list)
    code_changes: list[CodeChange] = field(default_factory=list)
    preserve_context_on_topic_shift: bool = True
    context_integration_level: IntegrationLevel = IntegrationLevel.BALANCED
    track_intent_transitions: bool = True


@dataclass
class ContextUpdateResult:
    conversation_id: str
    updated_focus: Optional[Focus] = None
    topic_shift: bool = False
    intent_transition: bool = False
    context_preserved: bool = True
    previous_intent: Optional[str] = None
    current_intent: Optional[str] = None
    current_topic_id: Optional[str] = None
    synthesis: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        continuity: dict[str, Any] = {
            "topic_shift": self.topic_shift,
            "intent_transition": self.intent_transition,
            "context_preserved": self.context_preserved,
        }
        if self.intent_transition:
            continuity["intent"] = {"from": self.previous_intent, "to": self.current_intent}
        return {
            "conversation_id": self.conversation_id,
            "updated_focus": self.updated_focus.to_dict() if self.updated_focus else None,
            "current_intent": self.current_intent,
            "current_topic_id": self.current_topic_id,
            "context_continuity": continuity,
            "synthesis": self.synthesis,
        }
