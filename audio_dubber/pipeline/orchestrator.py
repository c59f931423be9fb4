"""
Pipeline orchestration: upload bytes in, dubbed MP3 bytes out.

The orchestrator is a linear state machine:

    IDLE -> NORMALIZING -> SEPARATING -> TRANSCRIBING -> TRANSLATING
         -> SYNTHESIZING -> POST_PROCESSING_VOICE -> MIXING -> COMPLETED

with FAILED reachable from every non-terminal state. Instrumental extraction
has no data dependency on the transcription/translation/synthesis branch, so
it runs on a worker thread while the calling thread drives the voice branch.
Both branches join before the voice is post-processed and mixed. State
transitions are only ever made by the calling thread, so the recorded
history is deterministic.
"""

import logging
import os
import re
import threading
import time
import traceback
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..audio.mixer import mix
from ..audio.normalizer import normalize, write_wav
from ..audio.separator import separate_instrumental
from ..audio.voice import apply_fades, normalize_voice
from ..config import (CONCURRENT_BRANCHES, OUTPUT_CONTENT_TYPE, OUTPUT_FILENAME,
                      VOICE_FADE_SECONDS)
from ..core.buffer import AudioBuffer
from ..core.workspace import Workspace, workspace_scope
from ..errors import (InvalidRequestError, PipelineCancelledError, PipelineError,
                      RequestValidationError)
from ..languages import LanguageCode, parse_target_language, resolve_source_language

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    IDLE = "idle"
    NORMALIZING = "normalizing"
    SEPARATING = "separating"
    TRANSCRIBING = "transcribing"
    TRANSLATING = "translating"
    SYNTHESIZING = "synthesizing"
    POST_PROCESSING_VOICE = "post_processing_voice"
    MIXING = "mixing"
    COMPLETED = "completed"
    FAILED = "failed"


SUCCESS_PATH = [
    PipelineState.IDLE,
    PipelineState.NORMALIZING,
    PipelineState.SEPARATING,
    PipelineState.TRANSCRIBING,
    PipelineState.TRANSLATING,
    PipelineState.SYNTHESIZING,
    PipelineState.POST_PROCESSING_VOICE,
    PipelineState.MIXING,
    PipelineState.COMPLETED,
]

STATUS_MESSAGES = {
    PipelineState.NORMALIZING: (5, "Decoding audio..."),
    PipelineState.SEPARATING: (15, "Extracting instrumental..."),
    PipelineState.TRANSCRIBING: (25, "Transcribing audio..."),
    PipelineState.TRANSLATING: (45, "Translating text..."),
    PipelineState.SYNTHESIZING: (60, "Synthesizing voice..."),
    PipelineState.POST_PROCESSING_VOICE: (80, "Normalizing voice..."),
    PipelineState.MIXING: (90, "Mixing and encoding..."),
    PipelineState.COMPLETED: (100, "Done"),
    PipelineState.FAILED: (100, "Failed"),
}

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,8}$")


@dataclass
class PipelineRequest:
    audio: bytes
    target_language: str
    filename: Optional[str] = None

    def extension(self) -> str:
        ext = os.path.splitext(os.path.basename(self.filename or ""))[1].lower()
        return ext if _EXTENSION_RE.match(ext) else ".wav"


@dataclass
class PipelineResult:
    state: PipelineState
    states: List[PipelineState] = field(default_factory=list)
    audio: Optional[bytes] = None
    error: Optional[PipelineError] = None
    content_type: str = OUTPUT_CONTENT_TYPE
    filename: str = OUTPUT_FILENAME

    @property
    def ok(self) -> bool:
        return self.error is None and self.audio is not None

    @property
    def status_code(self) -> int:
        return 200 if self.ok else self.error.status_code

    @property
    def message(self) -> str:
        """Client-visible text; never includes internal detail."""
        return "" if self.ok else self.error.public_message


class _RunControl:
    """Per-run cancellation, deadline and state bookkeeping."""

    def __init__(self, cancel_event: Optional[threading.Event], timeout: Optional[float]):
        self.cancel_event = cancel_event
        self.deadline = time.monotonic() + timeout if timeout is not None else None
        self.states: List[PipelineState] = [PipelineState.IDLE]

    @property
    def state(self) -> PipelineState:
        return self.states[-1]

    def check(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelledError(f"Cancelled by caller during {self.state.value}")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise PipelineCancelledError(f"Request timed out during {self.state.value}")


class _InstrumentalBranch:
    """
    Instrumental extraction running alongside the voice branch.

    The branch only works on in-memory buffers and never touches the
    workspace, so cancelling it can never race with workspace cleanup.
    """

    def __init__(self, normalized: AudioBuffer, concurrent: bool):
        self.cancel_event = threading.Event()
        self._executor = None
        if concurrent:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="instrumental")
            self._future = self._executor.submit(self._extract, normalized)
        else:
            self._future = Future()
            try:
                self._future.set_result(self._extract(normalized))
            except Exception as e:
                self._future.set_exception(e)

    def _extract(self, normalized: AudioBuffer) -> AudioBuffer:
        if self.cancel_event.is_set():
            raise PipelineCancelledError("Instrumental extraction cancelled")
        return separate_instrumental(normalized)

    def failure(self) -> Optional[BaseException]:
        if self._future.done() and not self._future.cancelled():
            return self._future.exception()
        return None

    def join(self, control: _RunControl) -> AudioBuffer:
        """Wait for the branch while still honouring cancellation and the deadline."""
        while True:
            done, _ = wait([self._future], timeout=0.1)
            if done:
                break
            control.check()
        self._shutdown()
        return self._future.result()

    def cancel(self) -> None:
        self.cancel_event.set()
        if self._future.cancel():
            logger.info("Cancelled pending instrumental extraction")
        self._shutdown()

    def _shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


class DubbingPipeline:
    """
    Drives one request through every stage and owns its workspace.

    Args:
        transcriber: ASR collaborator (defaults to WhisperTranscriber)
        translator: Translation collaborator (defaults to ArgosTranslator)
        synthesizer: TTS collaborator (defaults to CoquiSynthesizer)
        workspace_root: Parent directory for per-request workspaces
        concurrent_branches: Run instrumental extraction on a worker thread
        progress_hook: Optional callback(step, percent, status_message)
    """

    def __init__(self,
                 transcriber=None,
                 translator=None,
                 synthesizer=None,
                 workspace_root: Optional[str] = None,
                 concurrent_branches: bool = CONCURRENT_BRANCHES,
                 progress_hook: Optional[Callable[[int, int, str], None]] = None):
        if transcriber is None:
            from ..core.transcriber import WhisperTranscriber
            transcriber = WhisperTranscriber()
        if translator is None:
            from ..core.translator import ArgosTranslator
            translator = ArgosTranslator()
        if synthesizer is None:
            from ..audio.synthesizer import CoquiSynthesizer
            synthesizer = CoquiSynthesizer()

        self.transcriber = transcriber
        self.translator = translator
        self.synthesizer = synthesizer
        self.workspace_root = workspace_root
        self.concurrent_branches = concurrent_branches
        self.progress_hook = progress_hook

    def _enter(self, control: _RunControl, state: PipelineState,
               branch: Optional[_InstrumentalBranch] = None) -> None:
        control.check()
        if branch is not None:
            failure = branch.failure()
            if failure is not None:
                raise failure
        control.states.append(state)
        percent, message = STATUS_MESSAGES[state]
        logger.info(f"[{len(control.states) - 1}/{len(SUCCESS_PATH) - 1}] {message}")
        if self.progress_hook:
            self.progress_hook(len(control.states) - 1, percent, message)

    def _validate(self, request: PipelineRequest) -> LanguageCode:
        target = parse_target_language(request.target_language)
        if not request.audio:
            raise InvalidRequestError("Audio payload is missing or empty")
        return target

    def run(self, request: PipelineRequest,
            cancel_event: Optional[threading.Event] = None,
            timeout: Optional[float] = None) -> PipelineResult:
        """
        Dub one audio file into the requested language.

        Args:
            request: Upload bytes, target language and optional original filename
            cancel_event: Set by the caller to abort at the next stage boundary
            timeout: Overall deadline in seconds, checked at stage boundaries

        Returns:
            PipelineResult carrying the MP3 bytes, or the typed error that stopped the run
        """
        control = _RunControl(cancel_event, timeout)

        try:
            target = self._validate(request)
        except RequestValidationError as e:
            logger.warning(f"Rejected request: {e}")
            return self._failed(control, e)

        try:
            with workspace_scope(self.workspace_root) as workspace:
                audio = self._execute(request, target, workspace, control)
                self._enter(control, PipelineState.COMPLETED)
        except PipelineError as e:
            logger.error(f"Pipeline failed during {control.state.value}: {e}")
            logger.error(traceback.format_exc())
            return self._failed(control, e)
        except Exception as e:
            logger.error(f"Unexpected pipeline failure during {control.state.value}: {e}")
            logger.error(traceback.format_exc())
            error = PipelineError(f"Unexpected failure: {e}")
            error.__cause__ = e
            return self._failed(control, error)

        logger.info(f"Pipeline completed: {len(audio)} bytes of {OUTPUT_CONTENT_TYPE}")
        return PipelineResult(state=control.state, states=list(control.states), audio=audio)

    def _failed(self, control: _RunControl, error: PipelineError) -> PipelineResult:
        control.states.append(PipelineState.FAILED)
        if self.progress_hook:
            percent, message = STATUS_MESSAGES[PipelineState.FAILED]
            try:
                self.progress_hook(len(control.states) - 1, percent, message)
            except Exception as e:
                logger.warning(f"Progress hook failed while reporting failure: {e}")
        return PipelineResult(state=control.state, states=list(control.states), error=error)

    def _execute(self, request: PipelineRequest, target: LanguageCode,
                 workspace: Workspace, control: _RunControl) -> bytes:
        original_path = workspace.path_for(f"original{request.extension()}")
        with open(original_path, "wb") as f:
            f.write(request.audio)

        self._enter(control, PipelineState.NORMALIZING)
        normalized = normalize(original_path, workspace.path_for("normalized.wav"))

        self._enter(control, PipelineState.SEPARATING)
        branch = _InstrumentalBranch(normalized, self.concurrent_branches)
        try:
            self._enter(control, PipelineState.TRANSCRIBING, branch)
            transcript = self.transcriber.transcribe(normalized)
            source = resolve_source_language(transcript.detected_language)

            self._enter(control, PipelineState.TRANSLATING, branch)
            translated = self.translator.translate(transcript.text, source, target)

            self._enter(control, PipelineState.SYNTHESIZING, branch)
            voice = self.synthesizer.synthesize(translated, target)
            write_wav(voice, workspace.path_for("voice.wav"))

            instrumental = branch.join(control)
        except BaseException:
            branch.cancel()
            raise
        write_wav(instrumental, workspace.path_for("instrumental.wav"))

        self._enter(control, PipelineState.POST_PROCESSING_VOICE)
        processed = normalize_voice(apply_fades(voice, VOICE_FADE_SECONDS))
        write_wav(processed, workspace.path_for("voice-processed.wav"))

        self._enter(control, PipelineState.MIXING)
        return mix(instrumental, processed, workspace.path_for("mix.mp3"))


_default_pipeline: Optional[DubbingPipeline] = None
_default_pipeline_lock = threading.Lock()


def get_default_pipeline() -> DubbingPipeline:
    global _default_pipeline
    with _default_pipeline_lock:
        if _default_pipeline is None:
            _default_pipeline = DubbingPipeline()
        return _default_pipeline


def run_pipeline(audio: bytes, target_language: str, filename: Optional[str] = None,
                 cancel_event: Optional[threading.Event] = None,
                 timeout: Optional[float] = None) -> PipelineResult:
    """Convenience wrapper around the shared default pipeline."""
    request = PipelineRequest(audio=audio, target_language=target_language, filename=filename)
    return get_default_pipeline().run(request, cancel_event=cancel_event, timeout=timeout)
