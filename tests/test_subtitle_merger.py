import os
import unittest

from fakes import TempDirTestCase, srt_block
from segsub.exceptions import FileSystemError, FormattingError
from segsub.subtitle_merger import (
    Fragment, merge_fragments, parse_blocks, read_fragment, shift_timecode, write_atomically,
)

FIRST = srt_block(1, "00:00:01,000", "00:00:02,500", "Hello")
SECOND = (
    srt_block(1, "00:00:00,500", "00:00:03,000", "Second window")
    + srt_block(2, "00:00:04,000", "00:00:06,000", "two lines\nof text")
)
THIRD = srt_block(1, "00:00:10,000", "00:00:12,000", "Third")


class TestMergeFragments(unittest.TestCase):

    def setUp(self):
        self.fragments = [
            Fragment(window_index=0, start_time=0.0, text=FIRST),
            Fragment(window_index=1, start_time=60.0, text=SECOND),
            Fragment(window_index=2, start_time=120.0, text=THIRD),
        ]

    def test_blocks_are_renumbered_across_windows(self):
        text, entries = merge_fragments(self.fragments)

        self.assertEqual([e.sequence_number for e in entries], [1, 2, 3, 4])
        self.assertEqual([e.text for e in entries], ["Hello", "Second window", "two lines\nof text", "Third"])
        self.assertTrue(text.startswith("1\n00:00:01,000 --> 00:00:02,500\nHello\n\n2\n"))
        self.assertTrue(text.endswith("4\n00:02:10,000 --> 00:02:12,000\nThird\n\n"))

    def test_timecodes_are_shifted_by_window_start(self):
        _, entries = merge_fragments(self.fragments)
        self.assertEqual(entries[1].timecode_block, "00:01:00,500 --> 00:01:03,000")
        self.assertEqual(entries[2].timecode_block, "00:01:04,000 --> 00:01:06,000")

    def test_timecodes_kept_when_offsetting_disabled(self):
        _, entries = merge_fragments(self.fragments, offset_timecodes=False)
        self.assertEqual(entries[1].timecode_block, "00:00:00,500 --> 00:00:03,000")

    def test_order_follows_window_index_not_input_order(self):
        expected, _ = merge_fragments(self.fragments)
        shuffled = [self.fragments[2], self.fragments[0], self.fragments[1]]
        self.assertEqual(merge_fragments(shuffled)[0], expected)

    def test_missing_window_leaves_no_gap_in_numbering(self):
        _, entries = merge_fragments([self.fragments[0], self.fragments[2]])
        self.assertEqual([e.sequence_number for e in entries], [1, 2])

    def test_empty_fragment_contributes_nothing(self):
        empty = Fragment(window_index=3, start_time=180.0, text="\n\n")
        _, entries = merge_fragments(self.fragments + [empty])
        self.assertEqual(len(entries), 4)


class TestParseBlocks(unittest.TestCase):

    def test_whitespace_only_blocks_are_skipped(self):
        content = FIRST + "   \n\n" + "\n\n" + srt_block(2, "00:00:03,000", "00:00:04,000", "after gap")
        self.assertEqual([e.text for e in parse_blocks(content)], ["Hello", "after gap"])

    def test_blocks_without_text_are_skipped(self):
        content = srt_block(1, "00:00:00,000", "00:00:01,000", "") + FIRST.replace("1\n", "2\n", 1)
        entries = parse_blocks(content)
        self.assertEqual([e.text for e in entries], ["Hello"])

    def test_merged_output_has_no_empty_blocks(self):
        silent = srt_block(1, "00:00:00,000", "00:00:01,000", "   ")
        text, entries = merge_fragments([
            Fragment(window_index=0, start_time=0.0, text=silent),
            Fragment(window_index=1, start_time=60.0, text=FIRST),
        ])
        self.assertEqual(len(entries), 1)
        self.assertEqual(text, "1\n00:01:01,000 --> 00:01:02,500\nHello\n\n")

    def test_crlf_and_bom_are_tolerated(self):
        entries = parse_blocks("\ufeff" + FIRST.replace("\n", "\r\n"))
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].sequence_number, 1)
        self.assertEqual(entries[0].timecode_block, "00:00:01,000 --> 00:00:02,500")

    def test_block_without_timecode_is_dropped(self):
        content = "1\nno timecode here\n\n" + srt_block(2, "00:00:03,000", "00:00:04,000", "kept")
        with self.assertLogs("segsub.subtitle_merger", level="WARNING"):
            entries = parse_blocks(content)
        self.assertEqual([e.text for e in entries], ["kept"])

    def test_shift_keeps_trailing_position_info(self):
        shifted = shift_timecode("00:00:01,000 --> 00:00:02,000 X1:10 X2:20", 60.0)
        self.assertEqual(shifted, "00:01:01,000 --> 00:01:02,000 X1:10 X2:20")

    def test_shift_rejects_garbage(self):
        with self.assertRaises(FormattingError):
            shift_timecode("not a timecode", 1.0)


class TestFiles(TempDirTestCase):

    def test_read_fragment_rejects_undecodable_file(self):
        path = self.write("bad.srt", b"\xff\xfe\xfa")
        with self.assertRaises(FormattingError):
            read_fragment(path)

    def test_write_atomically_replaces_destination(self):
        destination = self.write("out/movie.srt", "old")

        write_atomically(destination, FIRST)

        with open(destination, encoding="utf-8") as f:
            self.assertEqual(f.read(), FIRST)
        self.assertEqual(os.listdir(self.path("out")), ["movie.srt"])

    def test_write_atomically_requires_existing_directory(self):
        with self.assertRaises(FileSystemError):
            write_atomically(self.path("missing", "movie.srt"), FIRST)


if __name__ == "__main__":
    unittest.main()
