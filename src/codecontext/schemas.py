"""
Request and response schemas for the context tool handlers.

Pydantic models for input validation at the handler boundary; the core
components work with the plain dataclasses these convert into.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from codecontext.continuity.state import CodeChange, ContextUpdateRequest, Message
from codecontext.retrieval.candidates import CandidateSnippet, RetrievalParameters

# ===== Retrieval =====


class RetrievalParametersInput(BaseModel):
    """Optional restrictions on where candidates come from."""

    include_sources: Optional[list[str]] = None  # fts, keywords, relationships, ...
    relationship_types: Optional[list[str]] = None
    max_seed_entities: Optional[int] = Field(default=None, ge=0)

    def to_parameters(self) -> RetrievalParameters:
        return RetrievalParameters(
            include_sources=self.include_sources,
            relationship_types=self.relationship_types,
            max_seed_entities=self.max_seed_entities,
        )


class RetrieveContextInput(BaseModel):
    query: str
    conversation_id: Optional[str] = None
    token_budget: Optional[int] = Field(default=None, gt=0)  # Falls back to default_token_budget
    retrieval_parameters: Optional[RetrievalParametersInput] = None


class ContextSnippetResponse(BaseModel):
    """One snippet as returned to the assistant."""

    id: str
    type: str
    content: str
    score: float
    file_path: Optional[str] = None
    relationship_context: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_candidate(cls, candidate: CandidateSnippet) -> "ContextSnippetResponse":
        return cls(
            id=candidate.id,
            type=candidate.source_type,
            content=candidate.content,
            score=round(candidate.consolidated_score, 4),
            file_path=candidate.file_path,
            relationship_context=(
                candidate.relationship_context.to_dict()
                if candidate.relationship_context
                else None
            ),
            metadata=candidate.metadata,
        )


# ===== Conversation continuity =====


class MessageInput(BaseModel):
    role: str = "user"
    content: str
    timestamp: Optional[datetime] = None


class CodeChangeInput(BaseModel):
    path: str
    changed_lines: int = Field(default=0, ge=0)
    change_type: str = "modified"
    entity_id: Optional[str] = None


class UpdateContextInput(BaseModel):
    """Input for update_conversation_context.

    ``conversation_id`` and ``context_integration_level`` are checked by the
    continuity manager so they surface with its error codes.
    """

    conversation_id: Optional[str] = None
    new_messages: list[MessageInput] = Field(default_factory=list)
    code_changes: list[CodeChangeInput] = Field(default_factory=list)
    preserve_context_on_topic_shift: bool = True
    context_integration_level: str = "balanced"
    track_intent_transitions: bool = True

    def to_request(self) -> ContextUpdateRequest:
        return ContextUpdateRequest(
            conversation_id=self.conversation_id or "",
            new_messages=[
                Message(role=m.role, content=m.content, timestamp=m.timestamp)
                for m in self.new_messages
            ],
            code_changes=[
                CodeChange(
                    path=c.path,
                    changed_lines=c.changed_lines,
                    change_type=c.change_type,
                    entity_id=c.entity_id,
                )
                for c in self.code_changes
            ],
            preserve_context_on_topic_shift=self.preserve_context_on_topic_shift,
            context_integration_level=self.context_integration_level,
            track_intent_transitions=self.track_intent_transitions,
        )


class InitializeContextInput(BaseModel):
    conversation_id: Optional[str] = None  # Generated when omitted
    initial_query: Optional[str] = None
    token_budget: Optional[int] = Field(default=None, gt=0)


# ===== Jobs =====


class EnqueueJobInput(BaseModel):
    target_entity_id: str
    target_entity_type: str
    task_type: str = "enrich_entity_summary_keywords"
    budget_hint: Optional[int] = Field(default=None, gt=0)
    max_attempts: Optional[int] = Field(default=None, ge=1)
