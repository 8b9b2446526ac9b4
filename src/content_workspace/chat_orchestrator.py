import asyncio
import inspect
import logging
from contextlib import aclosing
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from .attachments import ChatFile, file_to_part
from .conversation import ConversationRequest
from .messages import MODEL_ROLE, Message, Part, TextPart, model_placeholder, user_message
from .modes import Mode
from .provider_resolver import ResolvedProvider, has_credential, missing_credential_message, resolve_provider
from .session_store import ProcessingError, SessionRecord, SessionStore
from .settings import ChatSettings, GenerationConfig, ProviderSettings
from .streaming import CancellationToken, RequestAborted, ResponseSnapshot

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."

BackendFactory = Callable[[ResolvedProvider, ProviderSettings], Any]
FileConverter = Callable[[ChatFile], Any]


class SubmissionOutcome(str, Enum):
    SKIPPED = "skipped"
    REJECTED = "rejected"
    COMMITTED = "committed"
    ABORTED = "aborted"
    FAILED = "failed"


def merge_response_into_history(
    history: Tuple[Message, ...], snapshot: ResponseSnapshot
) -> Tuple[Message, ...]:
    """Fold a cumulative snapshot into the trailing model message.

    Returns ``history`` unchanged when it is empty or does not end with a
    model message, e.g. after the user cleared the chat mid-stream.
    """
    if not history or history[-1].role != MODEL_ROLE:
        return history

    last = history[-1]
    parts = list(last.parts)
    if parts and isinstance(parts[0], TextPart):
        parts[0] = TextPart(snapshot.text)
    else:
        parts.insert(0, TextPart(snapshot.text))

    thinking = last.thinking
    if snapshot.thinking is not None:
        thinking = tuple(snapshot.thinking)
    if snapshot.done and not thinking:
        thinking = None

    merged = replace(last, parts=tuple(parts) or (TextPart(""),), thinking=thinking)
    return history[:-1] + (merged,)


def drop_last_message(history: Tuple[Message, ...]) -> Tuple[Message, ...]:
    return history[:-1]


def describe_failure(exc: BaseException) -> str:
    message = str(exc).strip()
    return f"Chat failed: {message or UNKNOWN_ERROR_MESSAGE}"


class ChatSubmission:
    """Runs one chat exchange against the session of a mode.

    The caller decides ``can_submit``; while a response is streaming it must
    pass False so only one backend call is outstanding per session.
    """

    def __init__(
        self,
        store: SessionStore,
        provider_settings: Callable[[], ProviderSettings],
        chat_settings: Callable[[], ChatSettings],
        backend_factory: BackendFactory,
        file_converter: FileConverter = file_to_part,
    ) -> None:
        self.store = store
        self.provider_settings = provider_settings
        self.chat_settings = chat_settings
        self.backend_factory = backend_factory
        self.file_converter = file_converter

    async def submit(
        self,
        mode: Union[Mode, str] = Mode.CHAT,
        can_submit: bool = True,
        token: Optional[CancellationToken] = None,
    ) -> SubmissionOutcome:
        if not can_submit:
            return SubmissionOutcome.SKIPPED

        session = self.store.get(mode)
        text = session.chat_input.strip()
        files = tuple(session.chat_files)
        if not text and not files:
            return SubmissionOutcome.SKIPPED

        settings = self.provider_settings()
        resolved = resolve_provider(mode, settings)
        if resolved.requires_credential and not has_credential(settings, resolved.provider_id):
            self.store.merge(mode, {"error": ProcessingError(missing_credential_message(resolved.label))})
            return SubmissionOutcome.REJECTED

        try:
            parts = await self._build_parts(text, files)
        except Exception as exc:
            logger.error("Could not prepare attachments for %s: %s", _mode_name(mode), exc)
            self.store.merge(mode, {"error": ProcessingError(describe_failure(exc))})
            return SubmissionOutcome.FAILED

        history_before = session.history
        token = token or CancellationToken()
        self.store.set(mode, lambda prev: _begin_exchange(prev, parts))
        try:
            chat_settings = self.chat_settings()
            request = ConversationRequest(
                history=history_before,
                new_parts=tuple(parts),
                system_instruction=chat_settings.system_instruction,
                retrieval=chat_settings.vector_store if chat_settings.vector_store.enabled else None,
                generation=GenerationConfig(
                    temperature=chat_settings.temperature,
                    max_output_tokens=settings.max_output_tokens,
                ),
            )
            backend = self.backend_factory(resolved, settings)
            final = ResponseSnapshot(text="", thinking=(), done=True)
            async with aclosing(backend.stream_conversation(request, token)) as stream:
                async for snapshot in stream:
                    token.raise_if_cancelled()
                    final = snapshot
                    if not snapshot.done:
                        self._apply_snapshot(mode, snapshot)
            token.raise_if_cancelled()
            self._apply_snapshot(mode, replace(final, done=True))
        except RequestAborted:
            logger.info("Chat request for %s was cancelled", _mode_name(mode))
            self._rollback(mode)
            return SubmissionOutcome.ABORTED
        except asyncio.CancelledError:
            logger.info("Chat task for %s was cancelled", _mode_name(mode))
            self._rollback(mode)
            raise
        except Exception as exc:
            if token.cancelled:
                logger.info("Chat request for %s was cancelled (%s)", _mode_name(mode), exc)
                self._rollback(mode)
                return SubmissionOutcome.ABORTED
            logger.error("Chat request for %s failed: %s", _mode_name(mode), exc)
            self._rollback(mode, ProcessingError(describe_failure(exc)))
            return SubmissionOutcome.FAILED

        self.store.merge(mode, {"is_streaming_response": False})
        return SubmissionOutcome.COMMITTED

    async def _build_parts(self, text: str, files: Sequence[ChatFile]) -> List[Part]:
        parts: List[Part] = []
        for chat_file in files:
            part = self.file_converter(chat_file)
            if inspect.isawaitable(part):
                part = await part
            parts.append(part)
        if text:
            parts.append(TextPart(text))
        return parts

    def _apply_snapshot(self, mode: Union[Mode, str], snapshot: ResponseSnapshot) -> None:
        self.store.set_value(mode, "history", lambda history: merge_response_into_history(history, snapshot))

    def _rollback(self, mode: Union[Mode, str], error: Optional[ProcessingError] = None) -> None:
        def apply(prev: SessionRecord) -> SessionRecord:
            history = prev.history
            # Only the placeholder is removed; a cleared history stays cleared.
            if history and history[-1].role == MODEL_ROLE:
                history = drop_last_message(history)
            return replace(prev, history=history, is_streaming_response=False, error=error or prev.error)

        self.store.set(mode, apply)


def _begin_exchange(prev: SessionRecord, parts: Sequence[Part]) -> SessionRecord:
    return replace(
        prev,
        history=prev.history + (user_message(parts), model_placeholder()),
        error=None,
        is_streaming_response=True,
        chat_input="",
        chat_files=(),
    )


def _mode_name(mode: Union[Mode, str]) -> str:
    return mode.value if isinstance(mode, Mode) else str(mode)
