"""
Context continuity across conversation turns.

The manager owns every conversation's ActiveContextState. It records new
messages, segments the conversation into topics, follows the user's intent
and focus, and decides how much existing context survives a topic shift or
intent transition. Callers serialize updates per conversation.
"""

import json
import logging
from collections import OrderedDict
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Iterable, Optional

from codecontext.continuity.intent import (
    DEBUGGING,
    FEATURE_PLANNING,
    IntentClassifier,
    is_docs_path,
    is_test_path,
)
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
)
from codecontext.db.connection import Database
from codecontext.db.repositories import (
    ConversationMessageRepository,
    ConversationTopicRepository,
    topic_keywords,
)
from codecontext.exceptions import ValidationError
from codecontext.models.db import TargetEntityType, TaskType
from codecontext.models.metadata import JobPayload
from codecontext.utils.timeutil import utcnow

if TYPE_CHECKING:
    from codecontext.enrichment.job_queue import EnrichmentJobQueue

logger = logging.getLogger(__name__)

INTENT_PRIORITIES = {
    "debugging": "Identify and fix issues in the code",
    "feature_planning": "Design and plan new features",
    "code_review": "Review code for quality and correctness",
    "learning": "Explain concepts and provide information",
    "code_generation": "Generate or modify code",
}
DEFAULT_PRIORITY = "Address user's current needs"

PRIORITY_BUMP = 0.2
MAX_RECENT_ITEMS = 50
MAX_TRACKED_CONVERSATIONS = 1000
TOPIC_SUMMARY_CHARS = 200
FOCUS_PREDICTION_MESSAGES = 10


class ContextContinuityManager:
    """
    Tracks focus, intent and topics for active conversations.

    Example:
        >>> manager = ContextContinuityManager(database, job_queue=queue)
        >>> manager.initialize("conv-1", "why does login fail?")
        >>> result = manager.update(ContextUpdateRequest("conv-1", new_messages=[...]))
    """

    def __init__(
        self,
        database: Database,
        job_queue: Optional["EnrichmentJobQueue"] = None,
        intent_classifier: Optional[IntentClassifier] = None,
        segmenter: Optional[TopicSegmenter] = None,
        recent_item_window_seconds: int = 300,
        max_recent_items: int = MAX_RECENT_ITEMS,
        max_conversations: int = MAX_TRACKED_CONVERSATIONS,
    ):
        self.database = database
        self.job_queue = job_queue
        self.intent_classifier = intent_classifier or IntentClassifier()
        self.segmenter = segmenter or TopicSegmenter()
        self.recent_item_window = timedelta(seconds=recent_item_window_seconds)
        self.max_recent_items = max_recent_items
        self.max_conversations = max(max_conversations, 1)
        # Least recently used first
        self._states: "OrderedDict[str, ActiveContextState]" = OrderedDict()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(
        self, conversation_id: str, initial_query: Optional[str] = None
    ) -> ActiveContextState:
        """
        Start (or restart) tracking a conversation.

        A finalized conversation becomes active again. When an initial query
        is given it seeds the intent and opens the first topic.
        """
        _require_conversation_id(conversation_id)

        state = ActiveContextState(
            conversation_id=conversation_id, phase=ConversationPhase.ACTIVE
        )

        if initial_query:
            prediction = self.intent_classifier.classify([initial_query])
            if prediction:
                state.current_intent = prediction.intent
            keywords = self.segmenter.extract_keywords([initial_query])
            if keywords:
                with self.database.session() as session:
                    topics = ConversationTopicRepository(session)
                    parent = topics.get_latest(conversation_id)
                    topic = topics.open_topic(
                        conversation_id=conversation_id,
                        summary=_topic_summary(initial_query),
                        keywords=keywords,
                        purpose_tag=state.current_intent,
                        parent_topic_id=parent.topic_id if parent else None,
                    )
                    state.current_topic_id = topic.topic_id

        self._remember(state)
        logger.info(
            f"Initialized context for conversation {conversation_id} "
            f"(intent={state.current_intent})"
        )
        return state

    def finalize(self, conversation_id: str) -> dict[str, Any]:
        """
        End a conversation: clear its state, close its topic and queue topic
        generation.

        Returns:
            {"conversation_id", "topic_closed", "topics_job_id"}
        """
        _require_conversation_id(conversation_id)
        state = self._states.get(conversation_id)
        topic_closed = False

        if state is not None and state.current_topic_id:
            with self.database.session() as session:
                topic = ConversationTopicRepository(session).close_topic(
                    state.current_topic_id, end_message_id=state.last_message_id
                )
                topic_closed = topic is not None

        finalized = ActiveContextState(
            conversation_id=conversation_id, phase=ConversationPhase.FINALIZED
        )
        self._remember(finalized)

        job_id = None
        if self.job_queue is not None:
            job = self.job_queue.enqueue(
                target_entity_id=conversation_id,
                target_entity_type=TargetEntityType.CONVERSATION,
                task_type=TaskType.GENERATE_TOPICS,
                payload=JobPayload(reason="conversation finalized"),
            )
            job_id = job.job_id

        logger.info(f"Finalized conversation {conversation_id}")
        return {
            "conversation_id": conversation_id,
            "topic_closed": topic_closed,
            "topics_job_id": job_id,
        }

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    def get_state(self, conversation_id: str) -> Optional[ActiveContextState]:
        return self._states.get(conversation_id)

    def get_focus(self, conversation_id: str) -> Optional[Focus]:
        state = self._states.get(conversation_id)
        return state.focus if state else None

    def set_focus(self, conversation_id: str, kind: str, identifier: str) -> Focus:
        state = self._active_state(conversation_id)
        state.focus = Focus(kind=kind, identifier=identifier)
        state.updated_at = utcnow()
        return state.focus

    def add_context_items(
        self, conversation_id: str, items: Iterable[ContextItem]
    ) -> int:
        """
        Register items that were just surfaced to the assistant.

        Items replace earlier entries with the same identity. The list keeps
        the ``max_recent_items`` most recent entries.

        Returns:
            Number of items added
        """
        state = self._active_state(conversation_id)
        items = list(items)
        self._merge_items(state, items)

        if len(state.recent_context_items) > self.max_recent_items:
            state.recent_context_items.sort(key=lambda i: i.timestamp)
            state.recent_context_items = state.recent_context_items[-self.max_recent_items :]
        state.updated_at = utcnow()
        return len(items)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(self, request: ContextUpdateRequest) -> ContextUpdateResult:
        """
        Process new messages and code changes for a conversation.

        Raises:
            ValidationError: If the conversation id is missing, the
                conversation is finalized, or the integration level is unknown
        """
        _require_conversation_id(request.conversation_id)
        conversation_id = request.conversation_id
        try:
            level = IntegrationLevel(request.context_integration_level)
        except ValueError as e:
            raise ValidationError(
                f"Unknown context integration level: {request.context_integration_level!r}",
                code="INVALID_INTEGRATION_LEVEL",
            ) from e

        state = self._states.get(conversation_id)
        if state is not None and state.phase == ConversationPhase.FINALIZED:
            raise ValidationError(
                f"Conversation {conversation_id} is finalized",
                code="CONVERSATION_FINALIZED",
            )
        if state is None or state.phase == ConversationPhase.EMPTY:
            state = self.initialize(conversation_id)
        else:
            self._states.move_to_end(conversation_id)

        previous_intent = state.current_intent
        topic_shift, topic_summary = self._record_messages(state, request)

        intent_transition = False
        texts = [m.content for m in request.new_messages if m.content]
        if request.track_intent_transitions and texts:
            intent_transition = self._apply_intent(
                state, self.intent_classifier.classify(texts)
            )

        if request.code_changes:
            self._apply_code_changes(state, request.code_changes)
            if request.track_intent_transitions and not intent_transition:
                intent_transition = self._apply_intent(
                    state,
                    self.intent_classifier.classify(
                        [], [change.path for change in request.code_changes]
                    ),
                )

        context_preserved = True
        if topic_shift or intent_transition:
            if request.preserve_context_on_topic_shift:
                self._integrate(state, level, request.code_changes, intent_transition)
            else:
                self._discard(state)
                context_preserved = False
            logger.info(
                f"Conversation {conversation_id}: topic_shift={topic_shift} "
                f"intent {previous_intent} -> {state.current_intent} "
                f"(level={level.value}, preserved={context_preserved})"
            )

        state.updated_at = utcnow()
        try:
            synthesis = self._synthesize(
                state, topic_shift or intent_transition, topic_summary
            )
        except Exception as e:
            logger.warning(f"Context synthesis failed for {conversation_id}: {e}")
            synthesis = {"summary": "Context updated"}

        return ContextUpdateResult(
            conversation_id=conversation_id,
            updated_focus=state.focus,
            topic_shift=topic_shift,
            intent_transition=intent_transition,
            context_preserved=context_preserved,
            previous_intent=previous_intent,
            current_intent=state.current_intent,
            current_topic_id=state.current_topic_id,
            synthesis=synthesis,
        )

    def _record_messages(
        self, state: ActiveContextState, request: ContextUpdateRequest
    ) -> tuple[bool, Optional[str]]:
        """
        Append messages to history and segment topics.

        Returns:
            (topic shift detected, summary of the open topic)
        """
        topic_shift = False
        with self.database.session() as session:
            messages = ConversationMessageRepository(session)
            topics = ConversationTopicRepository(session)

            recorded = [
                messages.append(
                    conversation_id=state.conversation_id,
                    role=message.role,
                    content=message.content,
                    timestamp=message.timestamp,
                    topic_id=state.current_topic_id,
                )
                for message in request.new_messages
            ]

            new_keywords = self.segmenter.extract_keywords(
                m.content for m in request.new_messages
            )
            current = topics.get(state.current_topic_id) if state.current_topic_id else None

            if current is None and new_keywords and recorded:
                current = topics.open_topic(
                    conversation_id=state.conversation_id,
                    summary=_topic_summary(_first_user_text(request) or recorded[0].content),
                    keywords=new_keywords,
                    purpose_tag=state.current_intent,
                    start_message_id=recorded[0].message_id,
                    start_timestamp=recorded[0].timestamp,
                )
                state.current_topic_id = current.topic_id
                for message in recorded:
                    message.topic_id = current.topic_id

            elif current is not None and new_keywords:
                decision = self.segmenter.detect_shift(topic_keywords(current), new_keywords)
                if decision.is_shift:
                    topic_shift = True
                    topics.close_topic(current.topic_id, end_message_id=state.last_message_id)
                    current = topics.open_topic(
                        conversation_id=state.conversation_id,
                        summary=_topic_summary(
                            _first_user_text(request) or recorded[0].content
                        ),
                        keywords=new_keywords,
                        parent_topic_id=current.topic_id,
                        start_message_id=recorded[0].message_id if recorded else None,
                        start_timestamp=recorded[0].timestamp if recorded else None,
                    )
                    state.current_topic_id = current.topic_id
                    for message in recorded:
                        message.topic_id = current.topic_id
                else:
                    current.keywords = _dump_keywords(
                        self.segmenter.merge_keywords(topic_keywords(current), new_keywords)
                    )

            if recorded:
                state.last_message_id = recorded[-1].message_id
            session.flush()
            topic_summary = current.summary if current is not None else None

        return topic_shift, topic_summary

    def _apply_intent(self, state: ActiveContextState, prediction) -> bool:
        """Set the predicted intent; True when it replaced a different one."""
        if prediction is None or prediction.intent == state.current_intent:
            return False
        previous = state.current_intent
        state.current_intent = prediction.intent
        return previous is not None

    def _apply_code_changes(
        self, state: ActiveContextState, changes: list[CodeChange]
    ) -> None:
        most_changed = max(changes, key=lambda change: change.changed_lines)
        state.focus = Focus(kind="file", identifier=most_changed.path)
        now = utcnow()
        self._merge_items(
            state,
            [
                ContextItem(
                    type="code_change",
                    id=change.entity_id,
                    name=change.path.rsplit("/", 1)[-1],
                    path=change.path,
                    content_type="text" if is_docs_path(change.path) else "code",
                    priority=0.7 if change is most_changed else 0.5,
                    timestamp=now,
                )
                for change in changes
            ],
        )

    def _merge_items(self, state: ActiveContextState, items: list[ContextItem]) -> None:
        by_identity = {item.identity: i for i, item in enumerate(state.recent_context_items)}
        for item in items:
            index = by_identity.get(item.identity)
            if index is None:
                by_identity[item.identity] = len(state.recent_context_items)
                state.recent_context_items.append(item)
            else:
                state.recent_context_items[index] = item

    def _integrate(
        self,
        state: ActiveContextState,
        level: IntegrationLevel,
        code_changes: list[CodeChange],
        intent_transition: bool,
    ) -> None:
        if level == IntegrationLevel.MINIMAL:
            state.recent_context_items = []
            return

        if level == IntegrationLevel.AGGRESSIVE:
            return

        # Balanced
        now = utcnow()
        focus_id = state.focus.identifier if state.focus else None
        changed_paths = {change.path for change in code_changes}
        kept = [
            item
            for item in state.recent_context_items
            if (focus_id and focus_id in (item.path, item.id, item.related_to))
            or (item.path and item.path in changed_paths)
            or now - item.timestamp <= self.recent_item_window
        ]

        if intent_transition and code_changes:
            for item in kept:
                if item.content_type != "code" and not is_docs_path(item.path):
                    continue
                if state.current_intent == DEBUGGING and is_test_path(item.path):
                    item.priority = min(item.priority + PRIORITY_BUMP, 1.0)
                elif state.current_intent == FEATURE_PLANNING and is_docs_path(item.path):
                    item.priority = min(item.priority + PRIORITY_BUMP, 1.0)
            kept.sort(key=lambda item: item.priority, reverse=True)

        state.recent_context_items = kept

    def _discard(self, state: ActiveContextState) -> None:
        intent = state.current_intent
        state.clear()
        state.current_intent = intent
        if intent is None:
            return
        with self.database.session() as session:
            recent = ConversationMessageRepository(session).get_recent(
                state.conversation_id, limit=FOCUS_PREDICTION_MESSAGES
            )
            texts = [message.content for message in recent]
        state.focus = self.intent_classifier.predict_focus(texts)

    def _synthesize(
        self,
        state: ActiveContextState,
        changed: bool,
        topic_summary: Optional[str],
    ) -> dict[str, Any]:
        intent_text = (state.current_intent or "general_discussion").replace("_", " ")
        focus = state.focus

        if focus and changed:
            summary = (
                f'The conversation is now focused on {focus.kind} "{focus.identifier}" '
                f"with the purpose of {intent_text}"
            )
        elif focus:
            summary = f'Continuing focus on {focus.kind} "{focus.identifier}" with {intent_text}'
        else:
            summary = "Current conversation context"

        if topic_summary:
            summary += f". Recent discussion: {topic_summary}"

        priorities = [INTENT_PRIORITIES.get(state.current_intent or "", DEFAULT_PRIORITY)]
        if focus:
            priorities.append(f"Focus on {focus.kind}: {focus.identifier}")
        top_items = sorted(
            state.recent_context_items, key=lambda item: item.priority, reverse=True
        )[:2]
        for item in top_items:
            if item.path and item.content_type == "code":
                priorities.append(f"Maintain context on file: {item.name}")
            else:
                priorities.append(f"Keep focus on: {item.name}")

        return {"summary": summary, "top_priorities": priorities}

    def _active_state(self, conversation_id: str) -> ActiveContextState:
        _require_conversation_id(conversation_id)
        state = self._states.get(conversation_id)
        if state is not None and state.phase == ConversationPhase.FINALIZED:
            raise ValidationError(
                f"Conversation {conversation_id} is finalized",
                code="CONVERSATION_FINALIZED",
            )
        if state is None:
            state = self.initialize(conversation_id)
        else:
            self._states.move_to_end(conversation_id)
        return state

    def _remember(self, state: ActiveContextState) -> None:
        """Store a state, evicting the least recently used beyond the limit.

        Finalized markers go before active conversations.
        """
        conversation_id = state.conversation_id
        self._states[conversation_id] = state
        self._states.move_to_end(conversation_id)

        while len(self._states) > self.max_conversations:
            others = [cid for cid in self._states if cid != conversation_id]
            victim = next(
                (
                    cid
                    for cid in others
                    if self._states[cid].phase == ConversationPhase.FINALIZED
                ),
                others[0],
            )
            del self._states[victim]
            logger.debug(f"Evicted context state for conversation {victim}")


def _require_conversation_id(conversation_id: Optional[str]) -> None:
    if not conversation_id or not str(conversation_id).strip():
        raise ValidationError(
            "conversation_id is required", code="MISSING_CONVERSATION_ID"
        )


def _first_user_text(request: ContextUpdateRequest) -> Optional[str]:
    for message in request.new_messages:
        if message.role == "user" and message.content:
            return message.content
    return None


def _topic_summary(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= TOPIC_SUMMARY_CHARS:
        return text
    return text[: TOPIC_SUMMARY_CHARS - 3] + "..."


def _dump_keywords(keywords: list[str]) -> str:
    return json.dumps(keywords)
