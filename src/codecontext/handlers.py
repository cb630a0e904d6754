"""
Tool handlers exposed to the AI assistant.

Each handler validates its input, calls the core components from the
injected ``Services`` and returns a plain dict. Handlers never raise:
failures come back as structured error responses.
"""

import logging
import uuid
from pathlib import PurePosixPath
from typing import Any, Optional

from pydantic import ValidationError as SchemaValidationError

from codecontext.bootstrap import Services
from codecontext.continuity.state import ContextItem, ConversationPhase
from codecontext.db.repositories import ConversationMessageRepository
from codecontext.enrichment.enricher import Enricher
from codecontext.exceptions import CodeContextError, ValidationError
from codecontext.models.metadata import JobPayload
from codecontext.retrieval.candidates import CandidateSnippet, RetrievalParameters
from codecontext.schemas import (
    ContextSnippetResponse,
    EnqueueJobInput,
    InitializeContextInput,
    RetrieveContextInput,
    UpdateContextInput,
)

logger = logging.getLogger(__name__)

SERVER_ERROR_CODE = -32000
INVALID_PARAMS_CODE = -32602
INITIAL_QUERY_SNIPPETS = 3


def _server_error(tool: str, error: Exception) -> dict[str, Any]:
    return {
        "processed_ok": False,
        "error": {
            "code": SERVER_ERROR_CODE,
            "message": f"Internal server error during {tool}.",
            "data": {"details": str(error)},
        },
    }


def _invalid_params(tool: str, error: Exception) -> dict[str, Any]:
    code = error.code if isinstance(error, ValidationError) else "INVALID_REQUEST"
    return {
        "processed_ok": False,
        "error": {
            "code": INVALID_PARAMS_CODE,
            "message": f"Invalid parameters for {tool}.",
            "data": {"details": str(error), "error_code": code},
        },
    }


def _flag_error(error: Exception) -> dict[str, Any]:
    if isinstance(error, ValidationError):
        code = error.code
    elif isinstance(error, SchemaValidationError):
        code = "INVALID_REQUEST"
    else:
        code = "INTERNAL_ERROR"
    return {
        "processed_ok": False,
        "error": True,
        "error_code": code,
        "error_details": str(error),
    }


def _context_item(snippet: CandidateSnippet) -> ContextItem:
    name = snippet.name
    if not name and snippet.file_path:
        name = PurePosixPath(snippet.file_path).name
    return ContextItem(
        type=snippet.kind,
        id=snippet.id,
        name=name or snippet.id,
        path=snippet.file_path,
        content_type="code" if snippet.is_code else "text",
        priority=min(max(snippet.consolidated_score, 0.0), 1.0),
        related_to=(
            snippet.relationship_context.related_to_seed_entity_id
            if snippet.relationship_context
            else None
        ),
    )


class ContextToolHandlers:
    """
    Entry points for the assistant-facing tools.

    Example:
        >>> handlers = ContextToolHandlers(build_services())
        >>> handlers.retrieve_relevant_context("token refresh", "conv-1", 2000)
    """

    def __init__(self, services: Services):
        self.services = services

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def retrieve_relevant_context(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        token_budget: Optional[int] = None,
        retrieval_parameters: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Ranked, budget-constrained context for a query.

        Returns:
            {"context_snippets", "retrieval_summary", "processed_ok"}, an
            invalid-params error (-32602) for bad input, or a server error
            response (-32000)
        """
        try:
            request = RetrieveContextInput(
                query=query,
                conversation_id=conversation_id,
                token_budget=token_budget,
                retrieval_parameters=retrieval_parameters,
            )
            budget = (
                request.token_budget
                if request.token_budget is not None
                else self.services.config.default_token_budget
            )
            parameters = (
                request.retrieval_parameters.to_parameters()
                if request.retrieval_parameters
                else None
            )

            focus = (
                self.services.continuity.get_focus(request.conversation_id)
                if request.conversation_id
                else None
            )
            outcome = self.services.retrieval.get_relevant_context(
                request.query,
                request.conversation_id,
                budget,
                parameters=parameters,
                focus=focus.identifier if focus else None,
            )
            self._remember_snippets(request.conversation_id, outcome.snippets)

            response = {
                "context_snippets": [
                    ContextSnippetResponse.from_candidate(s).model_dump(exclude_none=True)
                    for s in outcome.snippets
                ],
                "retrieval_summary": outcome.summary,
                "processed_ok": True,
            }
            logger.info(
                f"retrieve_relevant_context returned {len(outcome.snippets)} snippets "
                f"for conversation {request.conversation_id}"
            )
            return response
        except (SchemaValidationError, ValidationError) as e:
            logger.warning(f"retrieve_relevant_context rejected: {e}")
            return _invalid_params("retrieve_relevant_context", e)
        except Exception as e:
            logger.error(
                f"Internal server error during retrieve_relevant_context: {e}",
                exc_info=True,
            )
            return _server_error("retrieve_relevant_context", e)

    def _remember_snippets(
        self, conversation_id: Optional[str], snippets: list[CandidateSnippet]
    ) -> None:
        if not conversation_id or not snippets:
            return
        state = self.services.continuity.get_state(conversation_id)
        if state is not None and state.phase == ConversationPhase.FINALIZED:
            return
        self.services.continuity.add_context_items(
            conversation_id, [_context_item(s) for s in snippets]
        )

    # ------------------------------------------------------------------
    # Conversation lifecycle
    # ------------------------------------------------------------------

    def initialize_conversation_context(
        self,
        conversation_id: Optional[str] = None,
        initial_query: Optional[str] = None,
        token_budget: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Start a conversation and gather an opening overview of the project.

        Every overview section degrades to an empty value on its own; the
        call only fails if the conversation itself cannot be started.
        """
        try:
            request = InitializeContextInput(
                conversation_id=conversation_id,
                initial_query=initial_query,
                token_budget=token_budget,
            )
            conversation_id = request.conversation_id or str(uuid.uuid4())
            query = (request.initial_query or "").strip() or None

            state = self.services.continuity.initialize(conversation_id, query)
            if query:
                with self.services.database.session() as session:
                    message = ConversationMessageRepository(session).append(
                        conversation_id=conversation_id,
                        role="user",
                        content=query,
                        topic_id=state.current_topic_id,
                    )
                    state.last_message_id = message.message_id

            summaries = self.services.summaries
            try:
                structure = summaries.get_project_structure_summary()
            except Exception as e:
                logger.error(f"Error fetching project structure summary: {e}")
                structure = None
            try:
                architecture = summaries.get_architecture_context_summary()
            except Exception as e:
                logger.error(f"Error fetching architecture context: {e}")
                architecture = {"documents": [], "goal_hint": None}
            try:
                recent_topics = summaries.get_recent_topics_summary(query)
            except Exception as e:
                logger.error(f"Error fetching recent conversation topics: {e}")
                recent_topics = []

            snippets: list[dict[str, Any]] = []
            if query:
                snippets = self._initial_snippets(
                    conversation_id, query, request.token_budget
                )

            return {
                "conversation_id": conversation_id,
                "initial_context_summary": (
                    "Initial query processed and logged."
                    if query
                    else "Conversation initialized."
                ),
                "comprehensive_context": {
                    "project_structure": structure,
                    "recent_conversations": {"topics": recent_topics},
                    "architecture_context": architecture,
                    "initial_query_context_snippets": snippets,
                    "current_intent": state.current_intent,
                },
                "processed_ok": True,
            }
        except Exception as e:
            logger.error(
                f"Internal server error during initialize_conversation_context: {e}",
                exc_info=True,
            )
            return _server_error("initialize_conversation_context", e)

    def _initial_snippets(
        self, conversation_id: str, query: str, token_budget: Optional[int]
    ) -> list[dict[str, Any]]:
        try:
            outcome = self.services.retrieval.get_relevant_context(
                query,
                conversation_id,
                token_budget or self.services.config.default_token_budget,
                parameters=RetrievalParameters(include_sources=["fts"]),
            )
        except Exception as e:
            logger.error(f"Error fetching snippets for initial query: {e}")
            return []
        top = outcome.snippets[:INITIAL_QUERY_SNIPPETS]
        self._remember_snippets(conversation_id, top)
        return [
            ContextSnippetResponse.from_candidate(s).model_dump(exclude_none=True)
            for s in top
        ]

    def update_conversation_context(
        self,
        conversation_id: Optional[str],
        new_messages: Optional[list[dict[str, Any]]] = None,
        code_changes: Optional[list[dict[str, Any]]] = None,
        preserve_context_on_topic_shift: bool = True,
        context_integration_level: str = "balanced",
        track_intent_transitions: bool = True,
    ) -> dict[str, Any]:
        """
        Record new messages and code changes.

        Returns:
            The continuity result with processed_ok True, or
            {"processed_ok": False, "error": True, "error_code", "error_details"}
        """
        try:
            request = UpdateContextInput(
                conversation_id=conversation_id,
                new_messages=new_messages or [],
                code_changes=code_changes or [],
                preserve_context_on_topic_shift=preserve_context_on_topic_shift,
                context_integration_level=context_integration_level,
                track_intent_transitions=track_intent_transitions,
            )
            result = self.services.continuity.update(request.to_request())
            return {**result.to_dict(), "processed_ok": True}
        except (CodeContextError, SchemaValidationError) as e:
            logger.warning(f"update_conversation_context rejected: {e}")
            return _flag_error(e)
        except Exception as e:
            logger.error(f"Error updating conversation context: {e}", exc_info=True)
            return _flag_error(e)

    def finalize_conversation_context(self, conversation_id: str) -> dict[str, Any]:
        try:
            outcome = self.services.continuity.finalize(conversation_id)
            return {**outcome, "processed_ok": True}
        except Exception as e:
            logger.error(f"Error finalizing conversation {conversation_id}: {e}")
            return _flag_error(e)

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    def enqueue_job(
        self,
        target_entity_id: str,
        target_entity_type: str,
        task_type: str = "enrich_entity_summary_keywords",
        budget_hint: Optional[int] = None,
        max_attempts: Optional[int] = None,
    ) -> dict[str, Any]:
        try:
            request = EnqueueJobInput(
                target_entity_id=target_entity_id,
                target_entity_type=target_entity_type,
                task_type=task_type,
                budget_hint=budget_hint,
                max_attempts=max_attempts,
            )
            job = self.services.job_queue.enqueue(
                request.target_entity_id,
                request.target_entity_type,
                request.task_type,
                payload=JobPayload(budget_hint=request.budget_hint, reason="requested"),
                max_attempts=request.max_attempts,
            )
            return {"job_id": job.job_id, "status": job.status, "processed_ok": True}
        except Exception as e:
            logger.warning(f"Could not enqueue job for {target_entity_id}: {e}")
            return _flag_error(e)

    def cancel_jobs_for_entity(self, entity_id: str) -> dict[str, Any]:
        try:
            cancelled = self.services.job_queue.cancel_for_entity(entity_id)
            return {"entity_id": entity_id, "cancelled": cancelled, "processed_ok": True}
        except Exception as e:
            logger.error(f"Could not cancel jobs for {entity_id}: {e}")
            return _flag_error(e)

    def get_job_stats(self) -> dict[str, Any]:
        return {
            "queue": self.services.job_queue.get_stats().to_dict(),
            "worker": self.services.worker.get_stats(),
        }

    def start(
        self,
        polling_interval: Optional[float] = None,
        concurrency: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> dict[str, Any]:
        self.services.worker.start(
            polling_interval=polling_interval,
            concurrency=concurrency,
            batch_size=batch_size,
        )
        return {"running": self.services.worker.is_running}

    def stop(self) -> dict[str, Any]:
        self.services.worker.stop()
        return {"stopping": True}

    def drain(self, timeout: Optional[float] = None) -> dict[str, Any]:
        return {"drained": self.services.worker.drain(timeout=timeout)}

    def set_enrichment_service(self, enricher: Optional[Enricher]) -> None:
        self.services.worker.set_enrichment_service(enricher)
