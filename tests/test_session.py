import os
import threading
import unittest

from fakes import FakeSlicer, FakeTranscriber, ManualPlayback, TempDirTestCase, files_in, wait_until
from segsub.config_loader import ConfigLoader
from segsub.exceptions import BinaryNotFoundError, CancelledError, SegSubError
from segsub.models import OutputFormat
from segsub.path_resolver import BinaryResolver, ModelResolver
from segsub.playback import WallClockPlayback
from segsub.session import Session


class SessionTestCase(TempDirTestCase):

    def setUp(self):
        super().setUp()
        self.config = ConfigLoader().with_defaults({
            'temp_dir': self.scratch_dir,
            'poll_interval': 0.02,
            'max_workers': 2,
            'threads': 1,
        })
        self.write("data/models/ggml-base.bin", b"ggml")
        self.model_resolver = ModelResolver(data_dir=self.path("data"), bundle_dir=self.path("bundle"))
        self.transcriber = FakeTranscriber(unit=10.0)

    def make_session(self, strategies=None):
        binary_resolver = BinaryResolver(
            strategies=strategies if strategies is not None else [("test binary", lambda: "/bin/sh")],
        )
        session = Session(
            self.config,
            slicer=FakeSlicer(35.0),
            binary_resolver=binary_resolver,
            model_resolver=self.model_resolver,
            transcriber_factory=lambda binary: self.transcriber,
        )
        self.addCleanup(session.state.close)
        self.addCleanup(session.close)
        return session

    def export_jobs(self):
        return [j for j in self.transcriber.jobs if j.output_format == OutputFormat.SUBTITLE_FILE]


class TestLivePreview(SessionTestCase):

    def test_open_source_uses_wall_clock_playback_by_default(self):
        session = self.make_session()
        source = session.open_source("movie.mp4")
        self.assertEqual(source.duration, 35.0)
        self.assertIsInstance(session.player, WallClockPlayback)

    def test_live_transcription_publishes_segment_text(self):
        session = self.make_session()
        player = ManualPlayback(20.0)
        session.open_source("movie.mp4", player=player)

        session.transcribe()

        self.assertEqual(player.seeks, [0.0])
        self.assertTrue(wait_until(lambda: session.state.current_text == "segment 0 text"))

    def test_restarting_preview_reuses_the_scheduler(self):
        session = self.make_session()
        session.open_source("movie.mp4", player=ManualPlayback())
        session.transcribe()
        scheduler = session.scheduler

        session.translate("de")

        self.assertIs(session.scheduler, scheduler)
        self.assertTrue(session.state.is_translating)
        self.assertTrue(wait_until(lambda: session.state.translated_text == "segment 0 text"))

    def test_opening_another_source_tears_down_the_preview(self):
        session = self.make_session()
        session.open_source("first.mp4", player=ManualPlayback())
        session.transcribe()
        self.assertTrue(wait_until(lambda: session.state.current_text == "segment 0 text"))

        session.open_source("second.mp4", player=ManualPlayback())

        self.assertIsNone(session.scheduler)
        self.assertEqual(session.source.path, "second.mp4")
        self.assertIsNone(session.state.current_text)

    def test_subtitles_can_be_hidden(self):
        session = self.make_session()
        session.set_subtitles_hidden(True)
        self.assertTrue(session.state.subtitles_hidden)
        session.set_subtitles_hidden(False)
        self.assertFalse(session.state.subtitles_hidden)


class TestSessionExport(SessionTestCase):

    def test_export_follows_last_live_mode_and_language(self):
        session = self.make_session()
        session.open_source("movie.mp4", player=ManualPlayback())
        session.translate("de")
        session.stop_preview()

        report = session.export(self.path("movie.srt"))

        jobs = self.export_jobs()
        self.assertEqual(len(jobs), 1)
        self.assertTrue(jobs[0].translate)
        self.assertEqual(jobs[0].language, "de")
        self.assertEqual(jobs[0].model_path, os.path.join(self.model_resolver.models_dir, "ggml-base.bin"))
        self.assertEqual(report.entry_count, 1)
        self.assertTrue(os.path.exists(report.output_path))

    def test_explicit_export_options_win(self):
        session = self.make_session()
        session.open_source("movie.mp4", player=ManualPlayback())
        session.translate("de")
        session.stop_preview()

        session.export(self.path("movie.srt"), language="fr", translate=False)

        job = self.export_jobs()[-1]
        self.assertFalse(job.translate)
        self.assertEqual(job.language, "fr")

    def test_closing_during_export_leaves_a_clean_state(self):
        self.config['window_duration'] = 10.0
        gate = threading.Event()
        self.transcriber = FakeTranscriber(unit=10.0, gates={0: gate})
        session = self.make_session()
        session.open_source("movie.mp4", player=ManualPlayback())
        destination = self.path("movie.srt")
        errors = []

        def run():
            try:
                session.export(destination)
            except Exception as e:
                errors.append(e)

        thread = threading.Thread(target=run)
        thread.start()
        self.addCleanup(thread.join, 5)
        self.assertTrue(wait_until(lambda: 0 in self.transcriber.started))

        session.close()
        changes = []
        unsubscribe = session.state.subscribe(changes.append)
        self.addCleanup(unsubscribe)
        gate.set()
        thread.join(5)

        self.assertEqual([type(e) for e in errors], [CancelledError])
        self.assertEqual(changes, [])
        self.assertEqual(session.state.export_progress, 0.0)
        self.assertIsNone(session.state.export_status)
        self.assertIsNone(session.state.last_error)
        self.assertFalse(os.path.exists(destination))
        self.assertEqual(files_in(self.scratch_dir), [])


class TestSessionErrors(SessionTestCase):

    def test_missing_binary_is_reported(self):
        session = self.make_session(strategies=[])
        session.open_source("movie.mp4", player=ManualPlayback())

        with self.assertRaises(BinaryNotFoundError):
            session.transcribe()
        self.assertIn("not found", session.state.last_error)
        self.assertIsNone(session.scheduler)

    def test_commands_need_an_open_source(self):
        session = self.make_session()
        with self.assertRaises(SegSubError):
            session.transcribe()
        with self.assertRaises(SegSubError):
            session.export(self.path("movie.srt"))


if __name__ == "__main__":
    unittest.main()
