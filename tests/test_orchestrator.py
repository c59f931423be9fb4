import io
import os
import shutil
import tempfile
import threading
import unittest
from unittest.mock import patch

import numpy as np
import soundfile as sf

from audio_dubber.audio.synthesizer import Synthesizer
from audio_dubber.core.buffer import AudioBuffer
from audio_dubber.core.transcriber import Transcriber, Transcript
from audio_dubber.core.translator import Translator
from audio_dubber.errors import (GENERIC_FAILURE_MESSAGE, CorruptAudioError, PipelineCancelledError,
                                 SynthesisError, TranscriptionError, TranslationError,
                                 UnsupportedLanguageError)
from audio_dubber.languages import LanguageCode
from audio_dubber.pipeline.orchestrator import (SUCCESS_PATH, DubbingPipeline, PipelineRequest,
                                                PipelineState)

SR = 44100
HAS_FFMPEG = shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def _tone(freq, seconds, sr=SR, amplitude=0.3):
    t = np.arange(int(seconds * sr)) / sr
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


class FakeTranscriber(Transcriber):

    def __init__(self, text="Hello world", language="en", error=None):
        self.text = text
        self.language = language
        self.error = error
        self.calls = 0

    def transcribe(self, buffer):
        self.calls += 1
        if self.error:
            raise self.error
        return Transcript(self.text, self.language)


class FakeTranslator(Translator):

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def translate(self, text, source, target):
        self.calls.append((text, source, target))
        if self.error:
            raise self.error
        return f"[{target.value}] {text}"


class FakeSynthesizer(Synthesizer):

    def __init__(self, seconds=0.5, error=None, on_call=None):
        self.seconds = seconds
        self.error = error
        self.on_call = on_call
        self.calls = []

    def synthesize(self, text, language):
        self.calls.append((text, language))
        if self.on_call:
            self.on_call()
        if self.error:
            raise self.error
        return AudioBuffer.from_mono(_tone(220, self.seconds, 22050, amplitude=0.1), 22050)


def _normalized_buffer(*args, **kwargs):
    return AudioBuffer.from_channels([_tone(440, 1.0), _tone(660, 1.0)], SR)


class PipelineTestCase(unittest.TestCase):

    def setUp(self):
        self.root = tempfile.mkdtemp()
        self.transcriber = FakeTranscriber()
        self.translator = FakeTranslator()
        self.synthesizer = FakeSynthesizer()
        self.progress = []

        normalize_patcher = patch("audio_dubber.pipeline.orchestrator.normalize", side_effect=_normalized_buffer)
        mix_patcher = patch("audio_dubber.pipeline.orchestrator.mix", return_value=b"ID3 fake mp3")
        self.mock_normalize = normalize_patcher.start()
        self.mock_mix = mix_patcher.start()
        self.addCleanup(normalize_patcher.stop)
        self.addCleanup(mix_patcher.stop)

    def tearDown(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def make_pipeline(self, **kwargs):
        options = dict(
            transcriber=self.transcriber,
            translator=self.translator,
            synthesizer=self.synthesizer,
            workspace_root=self.root,
            concurrent_branches=True,
            progress_hook=lambda step, percent, message: self.progress.append((step, percent, message)),
        )
        options.update(kwargs)
        return DubbingPipeline(**options)

    def request(self, language="es", filename="talk.mp3"):
        return PipelineRequest(audio=b"\xff\xfb fake mp3 payload", target_language=language, filename=filename)


class TestSuccessfulRuns(PipelineTestCase):

    def test_success_path_for_every_language(self):
        pipeline = self.make_pipeline()
        for language in LanguageCode:
            with self.subTest(language=language.value):
                result = pipeline.run(self.request(language.value))

                self.assertTrue(result.ok)
                self.assertEqual(result.state, PipelineState.COMPLETED)
                self.assertEqual(result.states, SUCCESS_PATH)
                self.assertEqual(result.audio, b"ID3 fake mp3")
                self.assertEqual(result.status_code, 200)
                self.assertEqual(result.content_type, "audio/mpeg")
                self.assertEqual(result.filename, "translated-mix.mp3")
                self.assertEqual(self.synthesizer.calls[-1][1], language)

    def test_sequential_mode_has_same_history(self):
        result = self.make_pipeline(concurrent_branches=False).run(self.request("fr"))
        self.assertEqual(result.states, SUCCESS_PATH)

    def test_workspace_is_removed_after_success(self):
        self.make_pipeline().run(self.request())
        self.assertEqual(os.listdir(self.root), [])

    def test_stage_artifacts_are_written_to_workspace(self):
        seen = {}

        def capture_mix(instrumental, voice, output_path):
            workspace = os.path.dirname(output_path)
            seen["files"] = sorted(os.listdir(workspace))
            seen["workspace"] = workspace
            return b"ID3 fake mp3"

        self.mock_mix.side_effect = capture_mix
        self.make_pipeline().run(self.request(filename="song.ogg"))

        self.assertEqual(seen["files"], ["instrumental.wav", "original.ogg", "voice-processed.wav", "voice.wav"])
        self.assertTrue(os.path.basename(seen["workspace"]).startswith("audio-transform-"))
        self.mock_normalize.assert_called_once_with(
            os.path.join(seen["workspace"], "original.ogg"), os.path.join(seen["workspace"], "normalized.wav"))

    def test_unsafe_filename_extension_falls_back_to_wav(self):
        self.assertEqual(PipelineRequest(b"x", "es", "../../etc/passwd").extension(), ".wav")
        self.assertEqual(PipelineRequest(b"x", "es", None).extension(), ".wav")
        self.assertEqual(PipelineRequest(b"x", "es", "Song.MP3").extension(), ".mp3")

    def test_mixed_voice_is_normalized_and_aligned_later(self):
        self.make_pipeline().run(self.request())
        instrumental, voice, _ = self.mock_mix.call_args[0]
        self.assertEqual(instrumental.sample_rate, SR)
        self.assertEqual(instrumental.num_frames, SR)
        self.assertAlmostEqual(voice.peak(), 10 ** (-3.0 / 20), places=3)

    def test_detected_language_feeds_translation(self):
        self.transcriber.language = "de"
        self.make_pipeline().run(self.request("it"))
        self.assertEqual(self.translator.calls, [("Hello world", LanguageCode.DE, LanguageCode.IT)])

    def test_unsupported_detected_language_falls_back_to_english(self):
        self.transcriber.language = "ja"
        result = self.make_pipeline().run(self.request("es"))
        self.assertTrue(result.ok)
        self.assertEqual(self.translator.calls[0][1], LanguageCode.EN)

    def test_progress_hook_reports_each_stage(self):
        self.make_pipeline().run(self.request())
        steps = [step for step, _, _ in self.progress]
        percents = [percent for _, percent, _ in self.progress]
        self.assertEqual(steps, list(range(1, len(SUCCESS_PATH))))
        self.assertEqual(percents, sorted(percents))
        self.assertEqual(self.progress[-1][1], 100)

    def test_instrumental_extraction_runs_on_worker_thread(self):
        threads = []

        def record_thread(buffer):
            threads.append(threading.current_thread().name)
            return buffer.with_samples(buffer.samples)

        with patch("audio_dubber.pipeline.orchestrator.separate_instrumental", side_effect=record_thread):
            result = self.make_pipeline().run(self.request())

        self.assertTrue(result.ok)
        self.assertEqual(len(threads), 1)
        self.assertTrue(threads[0].startswith("instrumental"))


class TestValidation(PipelineTestCase):

    def test_unsupported_language_runs_nothing(self):
        result = self.make_pipeline().run(self.request("zz"))

        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, UnsupportedLanguageError)
        self.assertEqual(result.status_code, 400)
        self.assertEqual(result.message, "Unsupported target language")
        self.assertEqual(result.states, [PipelineState.IDLE, PipelineState.FAILED])
        self.assertEqual(self.transcriber.calls, 0)
        self.assertEqual(self.translator.calls, [])
        self.assertEqual(self.synthesizer.calls, [])
        self.mock_normalize.assert_not_called()
        self.assertEqual(os.listdir(self.root), [])

    def test_empty_payload_is_rejected(self):
        result = self.make_pipeline().run(PipelineRequest(audio=b"", target_language="es"))
        self.assertEqual(result.status_code, 400)
        self.assertEqual(result.message, "Missing audio file payload")
        self.mock_normalize.assert_not_called()


class TestFailures(PipelineTestCase):

    def assert_generic_failure(self, result, error_type, last_stage):
        self.assertFalse(result.ok)
        self.assertIsInstance(result.error, error_type)
        self.assertEqual(result.state, PipelineState.FAILED)
        self.assertEqual(result.states[-2], last_stage)
        self.assertEqual(result.status_code, 500)
        self.assertEqual(result.message, GENERIC_FAILURE_MESSAGE)
        self.assertIsNone(result.audio)
        self.assertEqual(os.listdir(self.root), [])

    def test_decode_failure(self):
        self.mock_normalize.side_effect = CorruptAudioError("truncated mp3")
        result = self.make_pipeline().run(self.request())
        self.assert_generic_failure(result, CorruptAudioError, PipelineState.NORMALIZING)
        self.assertEqual(self.transcriber.calls, 0)

    def test_transcription_failure(self):
        self.transcriber.error = TranscriptionError("Unable to derive transcript from audio")
        result = self.make_pipeline().run(self.request())
        self.assert_generic_failure(result, TranscriptionError, PipelineState.TRANSCRIBING)
        self.assertEqual(self.translator.calls, [])

    def test_translation_failure(self):
        self.translator.error = TranslationError("Translation failed to produce output")
        result = self.make_pipeline().run(self.request())
        self.assert_generic_failure(result, TranslationError, PipelineState.TRANSLATING)
        self.assertEqual(self.synthesizer.calls, [])

    def test_synthesis_failure(self):
        self.synthesizer.error = SynthesisError("TTS failed")
        result = self.make_pipeline().run(self.request())
        self.assert_generic_failure(result, SynthesisError, PipelineState.SYNTHESIZING)
        self.mock_mix.assert_not_called()

    def test_unexpected_exception_is_wrapped(self):
        self.mock_mix.side_effect = MemoryError("out of memory")
        result = self.make_pipeline().run(self.request())
        self.assertEqual(result.status_code, 500)
        self.assertEqual(result.message, GENERIC_FAILURE_MESSAGE)
        self.assertEqual(result.states[-2], PipelineState.MIXING)
        self.assertIsInstance(result.error.__cause__, MemoryError)
        self.assertEqual(os.listdir(self.root), [])

    def test_separation_failure_stops_before_transcription(self):
        with patch("audio_dubber.pipeline.orchestrator.separate_instrumental",
                   side_effect=RuntimeError("stft failed")):
            result = self.make_pipeline(concurrent_branches=False).run(self.request())

        self.assertEqual(result.status_code, 500)
        self.assertEqual(result.states, [PipelineState.IDLE, PipelineState.NORMALIZING,
                                         PipelineState.SEPARATING, PipelineState.FAILED])
        self.assertEqual(self.transcriber.calls, 0)
        self.assertEqual(os.listdir(self.root), [])

    def test_concurrent_separation_failure_fails_the_run(self):
        with patch("audio_dubber.pipeline.orchestrator.separate_instrumental",
                   side_effect=RuntimeError("stft failed")):
            result = self.make_pipeline(concurrent_branches=True).run(self.request())

        self.assertFalse(result.ok)
        self.assertEqual(result.state, PipelineState.FAILED)
        self.assertNotIn(PipelineState.POST_PROCESSING_VOICE, result.states)
        self.assertEqual(os.listdir(self.root), [])

    def test_failure_is_reported_to_progress_hook(self):
        self.translator.error = TranslationError("boom")
        self.make_pipeline().run(self.request())
        self.assertEqual(self.progress[-1][2], "Failed")


class TestCancellation(PipelineTestCase):

    def test_cancelled_before_start(self):
        cancel = threading.Event()
        cancel.set()
        result = self.make_pipeline().run(self.request(), cancel_event=cancel)

        self.assertIsInstance(result.error, PipelineCancelledError)
        self.assertEqual(result.states, [PipelineState.IDLE, PipelineState.FAILED])
        self.mock_normalize.assert_not_called()
        self.assertEqual(os.listdir(self.root), [])

    def test_cancelled_mid_run(self):
        cancel = threading.Event()

        def hook(step, percent, message):
            if step == SUCCESS_PATH.index(PipelineState.TRANSCRIBING):
                cancel.set()

        result = self.make_pipeline(progress_hook=hook).run(self.request(), cancel_event=cancel)

        self.assertIsInstance(result.error, PipelineCancelledError)
        self.assertEqual(result.states[-2], PipelineState.TRANSCRIBING)
        self.assertEqual(self.transcriber.calls, 1)
        self.assertEqual(self.translator.calls, [])
        self.assertEqual(os.listdir(self.root), [])

    def test_cancelled_while_waiting_for_instrumental(self):
        cancel = threading.Event()
        release = threading.Event()
        self.addCleanup(release.set)
        self.synthesizer.on_call = cancel.set

        def slow_separation(buffer):
            release.wait(10)
            return buffer

        with patch("audio_dubber.pipeline.orchestrator.separate_instrumental", side_effect=slow_separation):
            result = self.make_pipeline().run(self.request(), cancel_event=cancel)

        self.assertIsInstance(result.error, PipelineCancelledError)
        self.assertEqual(result.states[-2], PipelineState.SYNTHESIZING)
        self.mock_mix.assert_not_called()
        self.assertEqual(os.listdir(self.root), [])

    def test_deadline_exceeded(self):
        result = self.make_pipeline().run(self.request(), timeout=1e-9)
        self.assertIsInstance(result.error, PipelineCancelledError)
        self.assertIn("timed out", str(result.error))
        self.assertEqual(result.status_code, 500)
        self.assertEqual(os.listdir(self.root), [])

    def test_zero_timeout_is_an_immediate_deadline(self):
        result = self.make_pipeline().run(self.request(), timeout=0)
        self.assertIsInstance(result.error, PipelineCancelledError)
        self.assertEqual(result.states, [PipelineState.IDLE, PipelineState.FAILED])
        self.mock_normalize.assert_not_called()

    def test_no_timeout_means_no_deadline(self):
        result = self.make_pipeline().run(self.request(), timeout=None)
        self.assertTrue(result.ok)


@unittest.skipUnless(HAS_FFMPEG, "ffmpeg is not installed")
class TestEndToEnd(unittest.TestCase):

    def setUp(self):
        self.root = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def test_wav_upload_produces_mp3(self):
        music = _tone(330, 2.0)
        speech = _tone(1000, 2.0, amplitude=0.2)
        upload = io.BytesIO()
        sf.write(upload, np.stack([speech + music, speech - music]).T, SR, format="WAV")

        pipeline = DubbingPipeline(
            transcriber=FakeTranscriber(),
            translator=FakeTranslator(),
            synthesizer=FakeSynthesizer(seconds=1.5),
            workspace_root=self.root,
        )
        result = pipeline.run(PipelineRequest(upload.getvalue(), "es", "talk.wav"))

        self.assertTrue(result.ok, result.error)
        self.assertEqual(result.states, SUCCESS_PATH)
        self.assertTrue(result.audio[:3] == b"ID3" or result.audio[0] == 0xFF)
        self.assertEqual(os.listdir(self.root), [])


if __name__ == '__main__':
    unittest.main()
