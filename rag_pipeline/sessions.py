"""Chat sessions and grounded responses.

SessionOrchestrator owns the session lifecycle (create, deactivate, history) and the
respond flow for one chat turn:
1. Reject unknown or inactive sessions before any provider call.
2. Retrieve session.retrieval_count sources from the session's collection.
3. Build the prompt from sources and recent history within session.context_window.
4. Call the chat chain with the session's temperature and model hint.
5. Append the user message, then the assistant message with its sources, in one
   transaction. A failed chat writes no messages.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from rag_pipeline.db import session_scope
from rag_pipeline.errors import NotFound, SessionInactive, ValidationError
from rag_pipeline.fallback import FallbackOrchestrator, describe_failure
from rag_pipeline.generation import PromptPlan, build_prompt
from rag_pipeline.models import ROLE_ASSISTANT, ROLE_USER, ChatSession, Collection, Message
from rag_pipeline.obs import Trace
from rag_pipeline.providers import AUTO_MODEL, ChatRequest, ChatResponse
from rag_pipeline.retrieval import Retriever
from rag_pipeline.schemas import MessageOut, QueryResult, SessionOut, Source

logger = logging.getLogger(__name__)

CONTEXT_WINDOW_RANGE = (1000, 128000)
TEMPERATURE_RANGE = (0.0, 2.0)
RETRIEVAL_COUNT_RANGE = (1, 20)


def _check_range(label: str, value, bounds) -> None:
    lo, hi = bounds
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not lo <= value <= hi:
        raise ValidationError(f"{label} must be between {lo} and {hi}")


def message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id,
        session_id=m.session_id,
        role=m.role,
        content=m.content,
        sources=[Source(**s) for s in (m.sources or [])],
        tokens_used=m.tokens_used,
        model=m.model,
        provider=m.provider,
        created_at=m.created_at,
    )


def session_out(s: ChatSession) -> SessionOut:
    return SessionOut(
        id=s.id,
        collection_id=s.collection_id,
        user_id=s.user_id,
        title=s.title,
        context_window=s.context_window,
        temperature=s.temperature,
        model=s.model,
        retrieval_count=s.retrieval_count,
        is_active=s.is_active,
        created_at=s.created_at,
    )


class SessionOrchestrator:
    def __init__(
        self,
        session_factory: sessionmaker,
        retriever: Retriever,
        orchestrator: FallbackOrchestrator,
        default_context_window: int = 4000,
        default_temperature: float = 0.7,
        default_model: str = AUTO_MODEL,
        default_retrieval_count: int = 5,
        max_output_tokens: int = 2048,
        history_messages: int = 10,
    ):
        self._session_factory = session_factory
        self._retriever = retriever
        self._orchestrator = orchestrator
        self.default_context_window = default_context_window
        self.default_temperature = default_temperature
        self.default_model = default_model
        self.default_retrieval_count = default_retrieval_count
        self.max_output_tokens = max_output_tokens
        self.history_messages = history_messages

    # Lifecycle

    def create_session(
        self,
        collection_id: int,
        title: Optional[str] = None,
        context_window: Optional[int] = None,
        temperature: Optional[float] = None,
        model: Optional[str] = None,
        retrieval_count: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> int:
        """Create an active session on a collection and return its id."""
        context_window = self.default_context_window if context_window is None else context_window
        temperature = self.default_temperature if temperature is None else temperature
        retrieval_count = self.default_retrieval_count if retrieval_count is None else retrieval_count
        if isinstance(context_window, float) or isinstance(retrieval_count, float):
            raise ValidationError("context_window and retrieval_count must be integers")
        _check_range("context_window", context_window, CONTEXT_WINDOW_RANGE)
        _check_range("temperature", temperature, TEMPERATURE_RANGE)
        _check_range("retrieval_count", retrieval_count, RETRIEVAL_COUNT_RANGE)

        with session_scope(self._session_factory) as db:
            if db.get(Collection, collection_id) is None:
                raise NotFound("collection", collection_id)
            session = ChatSession(
                collection_id=collection_id,
                user_id=user_id,
                title=title or "New Chat Session",
                context_window=context_window,
                temperature=float(temperature),
                model=(model or self.default_model)[:100],
                retrieval_count=retrieval_count,
                is_active=True,
            )
            db.add(session)
            db.flush()
            session_id = session.id
        logger.info("Created session %s on collection %s", session_id, collection_id)
        return session_id

    def deactivate(self, session_id: int) -> None:
        """Stop further chat turns on a session; its history is kept."""
        with session_scope(self._session_factory) as db:
            session = db.get(ChatSession, session_id)
            if session is None:
                raise NotFound("session", session_id)
            session.is_active = False
        logger.info("Deactivated session %s", session_id)

    def get_session(self, session_id: int) -> SessionOut:
        with session_scope(self._session_factory) as db:
            session = db.get(ChatSession, session_id)
            if session is None:
                raise NotFound("session", session_id)
            return session_out(session)

    def list_sessions(self, collection_id: int) -> List[SessionOut]:
        with session_scope(self._session_factory) as db:
            rows = db.execute(
                select(ChatSession)
                .where(ChatSession.collection_id == collection_id)
                .order_by(ChatSession.created_at.desc(), ChatSession.id.desc())
            ).scalars().all()
            return [session_out(s) for s in rows]

    def history(self, session_id: int) -> List[MessageOut]:
        """All messages of a session in creation order."""
        with session_scope(self._session_factory) as db:
            if db.get(ChatSession, session_id) is None:
                raise NotFound("session", session_id)
            rows = db.execute(
                select(Message).where(Message.session_id == session_id).order_by(Message.id)
            ).scalars().all()
            return [message_out(m) for m in rows]

    def list_sources_for_message(self, message_id: int) -> List[Source]:
        with session_scope(self._session_factory) as db:
            message = db.get(Message, message_id)
            if message is None:
                raise NotFound("message", message_id)
            return [Source(**s) for s in (message.sources or [])]

    def count_messages(self) -> int:
        with session_scope(self._session_factory) as db:
            return db.execute(select(func.count(Message.id))).scalar_one()

    # Chat

    def respond(self, session_id: int, user_message: str) -> QueryResult:
        """Answer user_message in a session, grounded in the session's collection."""
        if not isinstance(user_message, str) or not user_message.strip():
            raise ValidationError("message is required")

        with session_scope(self._session_factory) as db:
            session = db.get(ChatSession, session_id)
            if session is None:
                raise NotFound("session", session_id)
            if not session.is_active:
                raise SessionInactive(session_id)
            collection_id = session.collection_id
            retrieval_count = session.retrieval_count
            context_window = session.context_window
            temperature = session.temperature
            model_hint = None if session.model == AUTO_MODEL else session.model
            recent = db.execute(
                select(Message.role, Message.content)
                .where(Message.session_id == session_id)
                .order_by(Message.id.desc())
                .limit(self.history_messages)
            ).all()
        history = [(r.role, r.content) for r in reversed(recent)]

        trace = Trace("rag.respond", input={"session_id": session_id, "message": user_message})
        try:
            plan, completion, assistant_id = self._answer(
                trace, session_id, user_message, history,
                collection_id, retrieval_count, context_window, temperature, model_hint,
            )
        except Exception as exc:
            trace.end(output={"error": describe_failure(exc)})
            raise

        trace.end(output={"provider": completion.provider, "model": completion.model})
        logger.info(
            "Session %s answered by %s/%s (%d tokens, %d sources)",
            session_id, completion.provider, completion.model, completion.tokens_used, len(plan.sources),
        )
        return QueryResult(
            content=completion.content,
            sources=plan.sources,
            tokens_used=completion.tokens_used,
            model=completion.model,
            provider=completion.provider,
            message_id=assistant_id,
        )

    def _answer(
        self,
        trace: Trace,
        session_id: int,
        user_message: str,
        history: List[Tuple[str, str]],
        collection_id: int,
        retrieval_count: int,
        context_window: int,
        temperature: float,
        model_hint: Optional[str],
    ) -> Tuple[PromptPlan, ChatResponse, int]:
        """Retrieve, prompt, chat and persist one turn; returns the plan, completion and assistant id."""
        sources = self._retriever.retrieve(user_message, collection_id, retrieval_count)
        trace.event("retrieval", {"num_sources": len(sources), "top_score": sources[0].score if sources else 0.0})

        plan = build_prompt(user_message, sources, history, context_window)
        if len(plan.sources) < len(sources) or plan.history_messages < len(history):
            logger.info(
                "Session %s prompt truncated: sources %d/%d, messages %d/%d",
                session_id, len(plan.sources), len(sources), plan.history_messages, len(history),
            )

        completion = self._orchestrator.chat(
            ChatRequest(
                system=plan.system,
                prompt=plan.prompt,
                temperature=temperature,
                model=model_hint,
                max_tokens=self.max_output_tokens,
            )
        )
        trace.generation(
            "answer",
            prompt=plan.prompt,
            output=completion.content,
            model=completion.model,
            metadata={"provider": completion.provider, "sources": len(plan.sources)},
        )

        with session_scope(self._session_factory) as db:
            session = db.get(ChatSession, session_id)
            if session is None:
                raise NotFound("session", session_id)
            if not session.is_active:
                raise SessionInactive(session_id)
            db.add(Message(session_id=session_id, role=ROLE_USER, content=user_message))
            db.flush()
            assistant = Message(
                session_id=session_id,
                role=ROLE_ASSISTANT,
                content=completion.content,
                sources=[s.model_dump() for s in plan.sources],
                tokens_used=completion.tokens_used,
                model=completion.model,
                provider=completion.provider,
            )
            db.add(assistant)
            db.flush()
            assistant_id = assistant.id
        return plan, completion, assistant_id
