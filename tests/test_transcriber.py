import os
import threading
import unittest

from fakes import FakeHandle, FakeRunner, TempDirTestCase, arg_after
from segsub.exceptions import CancelledError, TranscriptionFailedError
from segsub.models import AudioSlice, OutputFormat, TranscriptionJob
from segsub.process_runner import CancelToken
from segsub.transcriber import WhisperCliTranscriber


def replies(exit_code=0, stdout=b"", stderr=b"", write_srt=False):
    """Runner behaviour answering every spawn with the given result."""
    def write_fragment(spawned):
        with open(f"{arg_after(spawned, '-of')}.srt", "w", encoding="utf-8") as f:
            f.write("1\n00:00:00,000 --> 00:00:02,000\nHello\n\n")

    def behaviour(args):
        return FakeHandle(args, exit_code=exit_code, stdout=stdout, stderr=stderr,
                          on_exit=write_fragment if write_srt else None)
    return behaviour


class TestBuildArguments(unittest.TestCase):

    def setUp(self):
        self.transcriber = WhisperCliTranscriber("/app/whisper-cli", runner=FakeRunner(replies()))

    def test_plain_text_arguments(self):
        job = TranscriptionJob(model_path="/models/ggml-base.bin", language="de")

        args = self.transcriber.build_arguments("/tmp/a.wav", job)

        self.assertEqual(args, [
            "/app/whisper-cli", "--file", "/tmp/a.wav", "--model", "/models/ggml-base.bin",
            "--language", "de", "--no-timestamps", "--no-prints",
        ])

    def test_subtitle_file_arguments_with_translation(self):
        job = TranscriptionJob(model_path="m.bin", language="fr", translate=True,
                               output_format=OutputFormat.SUBTITLE_FILE, threads=4)

        args = self.transcriber.build_arguments("/tmp/w.wav", job, output_base="/tmp/w")

        self.assertIn("-osrt", args)
        self.assertEqual(arg_after(args, "-of"), "/tmp/w")
        self.assertEqual(arg_after(args, "--threads"), "4")
        self.assertEqual(args[-1], "--translate")
        self.assertNotIn("--no-timestamps", args)


class TestRun(TempDirTestCase):

    def setUp(self):
        super().setUp()
        self.audio_slice = AudioSlice(path=self.write("segment_0.wav", b"RIFF" + b"\0" * 2000),
                                      start_time=0.0, end_time=10.0)
        self.job = TranscriptionJob(model_path="m.bin")

    def test_returns_trimmed_stdout(self):
        runner = FakeRunner(replies(stdout=b"  Hello there.\n\n"))

        text = WhisperCliTranscriber("whisper-cli", runner=runner).run(self.audio_slice, self.job)

        self.assertEqual(text, "Hello there.")
        self.assertEqual(arg_after(runner.calls[0], "--file"), self.audio_slice.path)

    def test_forces_plain_text_mode(self):
        runner = FakeRunner(replies(stdout=b"text"))
        job = TranscriptionJob(model_path="m.bin", output_format=OutputFormat.SUBTITLE_FILE)

        WhisperCliTranscriber("whisper-cli", runner=runner).run(self.audio_slice, job)

        self.assertIn("--no-timestamps", runner.calls[0])
        self.assertNotIn("-osrt", runner.calls[0])

    def test_stderr_on_success_is_a_warning_not_a_failure(self):
        warnings = []
        runner = FakeRunner(replies(stdout=b"Bonjour", stderr=b"whisper_init: using fallback\n"))

        text = WhisperCliTranscriber("whisper-cli", runner=runner).run(
            self.audio_slice, self.job, on_warning=warnings.append)

        self.assertEqual(text, "Bonjour")
        self.assertEqual(warnings, ["Whisper reported: whisper_init: using fallback"])

    def test_non_zero_exit_raises_with_exit_code(self):
        runner = FakeRunner(replies(exit_code=3, stderr=b"failed to load model"))

        with self.assertRaisesRegex(TranscriptionFailedError, "failed to load model") as ctx:
            WhisperCliTranscriber("whisper-cli", runner=runner).run(self.audio_slice, self.job)
        self.assertEqual(ctx.exception.exit_code, 3)

    def test_unstartable_binary_raises_transcription_failed(self):
        def missing(args):
            raise FileNotFoundError(2, "No such file or directory", args[0])

        with self.assertRaises(TranscriptionFailedError) as ctx:
            WhisperCliTranscriber("/missing/whisper-cli", runner=FakeRunner(missing)).run(self.audio_slice, self.job)
        self.assertIsNone(ctx.exception.exit_code)

    def test_missing_slice_raises(self):
        gone = AudioSlice(path=self.path("gone.wav"), start_time=0.0, end_time=1.0)
        with self.assertRaises(FileNotFoundError):
            WhisperCliTranscriber("whisper-cli", runner=FakeRunner(replies())).run(gone, self.job)

    def test_cancellation_terminates_whisper(self):
        runner = FakeRunner(lambda args: FakeHandle(args, stdout=b"late", block=threading.Event()))
        token = CancelToken("test")
        timer = threading.Timer(0.05, token.cancel)
        timer.start()
        self.addCleanup(timer.cancel)

        with self.assertRaises(CancelledError):
            WhisperCliTranscriber("whisper-cli", runner=runner).run(self.audio_slice, self.job, cancel_token=token)
        self.assertTrue(runner.handles[0].terminated)


class TestRunToFile(TempDirTestCase):

    def setUp(self):
        super().setUp()
        self.audio_slice = AudioSlice(path=self.write("window_0.wav", b"RIFF" + b"\0" * 2000),
                                      start_time=0.0, end_time=60.0)
        self.base = self.path("window_0")
        self.job = TranscriptionJob(model_path="m.bin", threads=2)

    def test_returns_fragment_path(self):
        runner = FakeRunner(replies(write_srt=True))

        path = WhisperCliTranscriber("whisper-cli", runner=runner).run_to_file(self.audio_slice, self.job, self.base)

        self.assertEqual(path, f"{self.base}.srt")
        self.assertTrue(os.path.exists(path))
        self.assertIn("-osrt", runner.calls[0])

    def test_missing_output_file_fails(self):
        with self.assertRaisesRegex(TranscriptionFailedError, "not produced"):
            WhisperCliTranscriber("whisper-cli", runner=FakeRunner(replies())).run_to_file(
                self.audio_slice, self.job, self.base)

    def test_stale_fragment_is_not_mistaken_for_output(self):
        stale = self.write("window_0.srt", "1\n00:00:00,000 --> 00:00:01,000\nold\n\n")

        with self.assertRaises(TranscriptionFailedError):
            WhisperCliTranscriber("whisper-cli", runner=FakeRunner(replies())).run_to_file(
                self.audio_slice, self.job, self.base)
        self.assertFalse(os.path.exists(stale))

    def test_failure_removes_partial_fragment(self):
        runner = FakeRunner(replies(exit_code=1, write_srt=True))
        with self.assertRaises(TranscriptionFailedError):
            WhisperCliTranscriber("whisper-cli", runner=runner).run_to_file(self.audio_slice, self.job, self.base)
        self.assertFalse(os.path.exists(f"{self.base}.srt"))


if __name__ == "__main__":
    unittest.main()
