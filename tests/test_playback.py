import unittest

from segsub.playback import WallClockPlayback


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestWallClockPlayback(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()

    def test_position_advances_with_the_clock(self):
        player = WallClockPlayback(60.0, clock=self.clock)
        self.assertEqual(player.current_time(), 0.0)

        self.clock.now += 12.5

        self.assertEqual(player.current_time(), 12.5)
        self.assertFalse(player.finished)

    def test_rate_scales_elapsed_time(self):
        player = WallClockPlayback(60.0, rate=4.0, clock=self.clock)
        self.clock.now += 5.0
        self.assertEqual(player.current_time(), 20.0)

    def test_seek_restarts_from_the_new_position(self):
        player = WallClockPlayback(60.0, clock=self.clock)
        self.clock.now += 30.0

        player.seek(10.0)
        self.clock.now += 2.0

        self.assertEqual(player.current_time(), 12.0)

    def test_position_is_clamped_to_duration(self):
        player = WallClockPlayback(60.0, clock=self.clock)
        player.seek(-5.0)
        self.assertEqual(player.current_time(), 0.0)

        self.clock.now += 100.0

        self.assertEqual(player.current_time(), 60.0)
        self.assertTrue(player.finished)


if __name__ == "__main__":
    unittest.main()
