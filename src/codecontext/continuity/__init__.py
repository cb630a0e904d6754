"""
Conversation context continuity: focus, intent and topic tracking.
"""

from codecontext.continuity.intent import IntentClassifier, IntentPrediction
from codecontext.continuity.manager import ContextContinuityManager
from codecontext.continuity.segmenter import TopicSegmenter
from codecontext.continuity.state import (
    ActiveContextState,
    CodeChange,
    ContextItem,
    ContextUpdateRequest,
    ContextUpdateResult,
    ConversationPhase,
    Focus,
    IntegrationLevel,
    Message,
)

__all__ = [
    "ActiveContextState",
    "CodeChange",
    "ContextContinuityManager",
    "ContextItem",
    "ContextUpdateRequest",
    "ContextUpdateResult",
    "ConversationPhase",
    "Focus",
    "IntegrationLevel",
    "IntentClassifier",
    "IntentPrediction",
    "Message",
    "TopicSegmenter",
]
