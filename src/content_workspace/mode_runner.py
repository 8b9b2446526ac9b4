import asyncio
import inspect
import json
import logging
import re
import time
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .attachments import ChatFile, UnsupportedAttachmentError, file_to_part
from .chat_orchestrator import BackendFactory, FileConverter, SubmissionOutcome
from .conversation import ConversationRequest
from .messages import InlineDataPart, Part, TextPart
from .mode_prompts import JSON_OUTPUT_KEYS, SYSTEM_INSTRUCTIONS, build_mode_prompt, build_next_steps_prompt
from .modes import Mode, coerce_mode
from .provider_resolver import has_credential, missing_credential_message, resolve_provider
from .session_store import AppState, ProcessingError, Progress, SessionRecord, SessionStore
from .settings import ChatSettings, GenerationConfig, ProviderSettings
from .split_plan import SplitPlan, SplitPlanError, extract_json_object, parse_split_plan
from .streaming import CancellationToken, RequestAborted

logger = logging.getLogger(__name__)

SUGGESTION_MODES = (Mode.TECHNICAL, Mode.STYLE_EXTRACTOR)
ERROR_DETAILS_LIMIT = 2000

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")


class ModeOutputError(ValueError):
    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


@dataclass(frozen=True)
class ModeResult:
    mode: str
    text: str
    data: Optional[Dict[str, Any]] = None
    processing_time_seconds: float = 0


def coerce_mode_result(value: Any) -> Optional[ModeResult]:
    if isinstance(value, ModeResult):
        return value
    if isinstance(value, dict) and isinstance(value.get("text"), str):
        data = value.get("data")
        return ModeResult(
            mode=str(value.get("mode", "")),
            text=value["text"],
            data=data if isinstance(data, dict) else None,
            processing_time_seconds=float(value.get("processing_time_seconds") or 0),
        )
    return None


def is_ready(mode: Union[Mode, str], session: SessionRecord) -> bool:
    resolved = coerce_mode(mode)
    has_files = bool(session.current_files)
    if resolved == Mode.TECHNICAL:
        return has_files or bool(session.summary_text_input.strip())
    if resolved in (Mode.STYLE_EXTRACTOR, Mode.REWRITER, Mode.MATH_FORMATTER):
        return has_files
    if resolved == Mode.REASONING_STUDIO:
        return has_files or bool(session.reasoning_prompt.strip())
    if resolved == Mode.SCAFFOLDER:
        return has_files or bool(session.scaffolder_prompt.strip())
    if resolved == Mode.REQUEST_SPLITTER:
        return has_files or bool(session.request_splitter_spec.strip())
    if resolved == Mode.PROMPT_ENHANCER:
        return has_files or bool(session.prompt_enhancer_input.strip())
    if resolved == Mode.AGENT_DESIGNER:
        return has_files or bool(session.agent_goal.strip())
    return False


def parse_mode_output(mode: Mode, raw_text: str) -> Optional[Dict[str, Any]]:
    keys = JSON_OUTPUT_KEYS.get(mode)
    if not keys:
        return None
    try:
        payload = extract_json_object(raw_text)
    except SplitPlanError as exc:
        raise ModeOutputError(f"The response was not valid JSON ({exc})", raw_text) from exc
    missing = [key for key in keys if key not in payload]
    if missing:
        raise ModeOutputError(f"The response is missing: {', '.join(missing)}", raw_text)
    return payload


def parse_plan_output(raw_text: str) -> SplitPlan:
    try:
        return parse_split_plan(raw_text)
    except SplitPlanError as exc:
        raise ModeOutputError(str(exc), raw_text) from exc


def parse_suggestions(raw_text: str) -> Optional[Tuple[str, ...]]:
    text = (raw_text or "").strip()
    start, end = text.find("["), text.rfind("]")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, list):
        return None
    items = tuple(str(item).strip() for item in parsed if str(item).strip())
    return items or None


def search_paragraphs(text: str, term: str) -> List[str]:
    paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT.split(text or "") if p.strip()]
    needle = (term or "").strip().lower()
    if not needle:
        return paragraphs
    return [p for p in paragraphs if needle in p.lower()]


class ModeSubmission:
    """Runs a one-shot feature mode (summary, rewrite, scaffold, ...) for its session."""

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
        mode: Union[Mode, str],
        can_submit: bool = True,
        token: Optional[CancellationToken] = None,
    ) -> SubmissionOutcome:
        resolved_mode = coerce_mode(mode)
        session = self.store.get(resolved_mode)
        if not can_submit or resolved_mode == Mode.CHAT or session.app_state == AppState.PROCESSING:
            return SubmissionOutcome.SKIPPED
        if not is_ready(resolved_mode, session):
            return SubmissionOutcome.SKIPPED

        settings = self.provider_settings()
        resolved = resolve_provider(resolved_mode, settings)
        if resolved.requires_credential and not has_credential(settings, resolved.provider_id):
            self.store.merge(resolved_mode, {"error": ProcessingError(missing_credential_message(resolved.label))})
            return SubmissionOutcome.REJECTED

        token = token or CancellationToken()
        started = time.monotonic()
        self.store.merge(
            resolved_mode,
            {
                "app_state": AppState.PROCESSING,
                "error": None,
                "processed_data": None,
                "next_step_suggestions": None,
                "suggestions_loading": False,
                "progress": Progress("Starting", 0, "Preparing request."),
            },
        )
        try:
            documents, images = await self._load_files(resolved_mode, session.current_files)
            token.raise_if_cancelled()
            prompt = build_mode_prompt(resolved_mode, self.store.get(resolved_mode), documents)
            backend = self.backend_factory(resolved, settings)
            request = self._build_request(resolved_mode, [*images, TextPart(prompt)], settings)
            raw_text = await self._generate(resolved_mode, backend, request, token)
            token.raise_if_cancelled()

            self._progress(resolved_mode, "Parsing Response", 90, "Reading the model output.")
            elapsed = round(time.monotonic() - started, 2)
            if resolved_mode == Mode.REQUEST_SPLITTER:
                result: Any = parse_plan_output(raw_text)
            else:
                result = ModeResult(
                    mode=resolved_mode.value,
                    text=raw_text,
                    data=parse_mode_output(resolved_mode, raw_text),
                    processing_time_seconds=elapsed,
                )
        except RequestAborted:
            logger.info("%s run was cancelled", resolved_mode.value)
            self._restore_idle(resolved_mode)
            return SubmissionOutcome.ABORTED
        except asyncio.CancelledError:
            logger.info("%s task was cancelled", resolved_mode.value)
            self._restore_idle(resolved_mode)
            raise
        except Exception as exc:
            if token.cancelled:
                logger.info("%s run was cancelled (%s)", resolved_mode.value, exc)
                self._restore_idle(resolved_mode)
                return SubmissionOutcome.ABORTED
            logger.error("%s run failed: %s", resolved_mode.value, exc)
            details = getattr(exc, "raw_text", None)
            self.store.merge(
                resolved_mode,
                {
                    "app_state": AppState.ERROR,
                    "error": ProcessingError(
                        f"Failed to process: {exc}",
                        details=details[:ERROR_DETAILS_LIMIT] if details else None,
                    ),
                    "progress": Progress("Error", 100, "Processing failed."),
                },
            )
            return SubmissionOutcome.FAILED

        self.store.merge(
            resolved_mode,
            {
                "app_state": AppState.COMPLETED,
                "processed_data": result,
                "progress": Progress("Completed", 100, f"Finished in {elapsed:.1f}s."),
            },
        )
        if resolved_mode in SUGGESTION_MODES:
            await self._suggest_next_steps(resolved_mode, backend, raw_text, settings, token)
        return SubmissionOutcome.COMMITTED

    async def _load_files(
        self, mode: Mode, files: Sequence[ChatFile]
    ) -> Tuple[List[str], List[Part]]:
        documents: List[str] = []
        images: List[Part] = []
        total = len(files)
        for index, chat_file in enumerate(files, start=1):
            percentage = 2 + round(8 * index / total)
            self._progress(mode, "Processing Files", percentage, f"Reading {chat_file.name} ({index}/{total}).")
            part = self.file_converter(chat_file)
            if inspect.isawaitable(part):
                part = await part
            if isinstance(part, InlineDataPart):
                if mode != Mode.REWRITER:
                    raise UnsupportedAttachmentError(f"Images are only supported by the rewriter: {chat_file.name}")
                images.append(part)
            elif isinstance(part, TextPart):
                documents.append(part.text)
        self._progress(mode, "Content Loaded" if total else "Ready", 10, f"{total} file(s) loaded.")
        return documents, images

    def _build_request(self, mode: Mode, parts: Sequence[Part], settings: ProviderSettings) -> ConversationRequest:
        chat_settings = self.chat_settings()
        return ConversationRequest(
            history=(),
            new_parts=tuple(parts),
            system_instruction=SYSTEM_INSTRUCTIONS.get(mode, ""),
            generation=GenerationConfig(
                temperature=chat_settings.temperature,
                max_output_tokens=settings.max_output_tokens,
            ),
        )

    async def _generate(
        self, mode: Mode, backend: Any, request: ConversationRequest, token: CancellationToken
    ) -> str:
        text = ""
        self._progress(mode, "Generating", 30, "Waiting for the model.")
        async with aclosing(backend.stream_conversation(request, token)) as stream:
            async for snapshot in stream:
                token.raise_if_cancelled()
                text = snapshot.text
                if not snapshot.done:
                    percentage = 30 + min(55, len(text) // 100)
                    self._progress(mode, "Generating", percentage, f"Received {len(text)} characters.")
        return text

    async def _suggest_next_steps(
        self,
        mode: Mode,
        backend: Any,
        output_text: str,
        settings: ProviderSettings,
        token: CancellationToken,
    ) -> None:
        self.store.merge(mode, {"suggestions_loading": True})
        suggestions = None
        try:
            request = self._build_request(mode, [TextPart(build_next_steps_prompt(output_text))], settings)
            suggestions = parse_suggestions(await self._collect(backend, request, token))
            if suggestions is None:
                logger.warning("Next-step suggestions for %s were not a JSON list", mode.value)
        except RequestAborted:
            logger.info("Next-step suggestions for %s were cancelled", mode.value)
        except Exception as exc:
            logger.warning("Next-step suggestions for %s failed: %s", mode.value, exc)
        finally:
            self.store.merge(mode, {"suggestions_loading": False, "next_step_suggestions": suggestions})

    async def _collect(self, backend: Any, request: ConversationRequest, token: CancellationToken) -> str:
        text = ""
        async with aclosing(backend.stream_conversation(request, token)) as stream:
            async for snapshot in stream:
                text = snapshot.text
        return text

    def _progress(self, mode: Mode, stage: str, percentage: float, message: str) -> None:
        self.store.merge(mode, {"progress": Progress(stage, percentage, message)})

    def _restore_idle(self, mode: Mode) -> None:
        has_files = bool(self.store.get(mode).current_files)
        self.store.merge(
            mode,
            {
                "app_state": AppState.FILE_SELECTED if has_files else AppState.IDLE,
                "progress": Progress("Cancelled", 0, "Request was cancelled."),
            },
        )
