"""Tests for netgauge.grading -- scenario scores and grade bands."""

import unittest

from netgauge.grading import (
    GAMING,
    RTC,
    STREAMING,
    grade_color,
    grade_for,
    score,
    score_bundle,
    score_gaming,
    score_rtc,
    score_streaming,
)
from netgauge.models import Grade, MeasurementBundle


class TestGradeBands(unittest.TestCase):
    def test_boundaries(self):
        self.assertEqual(grade_for(100), Grade.GREAT)
        self.assertEqual(grade_for(80), Grade.GREAT)
        self.assertEqual(grade_for(79.9), Grade.GOOD)
        self.assertEqual(grade_for(60), Grade.GOOD)
        self.assertEqual(grade_for(40), Grade.AVERAGE)
        self.assertEqual(grade_for(20), Grade.POOR)
        self.assertEqual(grade_for(19.9), Grade.BAD)
        self.assertEqual(grade_for(0), Grade.BAD)

    def test_colors(self):
        self.assertEqual(grade_color(Grade.GREAT), "green")
        self.assertEqual(grade_color(Grade.AVERAGE), "yellow")
        self.assertEqual(grade_color(Grade.BAD), "red")


class TestStreaming(unittest.TestCase):
    def test_perfect(self):
        v = score_streaming(60, 10, 0)
        self.assertAlmostEqual(v.score, 100.0)
        self.assertEqual(v.grade, Grade.GREAT)
        self.assertEqual(v.scenario, STREAMING)

    def test_interpolated_download(self):
        # 35 + ((15 - 10) / 15) * 15 = 40, plus 20 + 20
        self.assertAlmostEqual(score_streaming(15, 10, 0).score, 80.0)

    def test_missing_download_contributes_nothing(self):
        self.assertAlmostEqual(score_streaming(None, 10, 0).score, 40.0)

    def test_high_latency_floor(self):
        # 10 - (1500 - 200) / 100 < 0 -> 0
        self.assertAlmostEqual(score_streaming(None, 1500, None).score, 0.0)


class TestGaming(unittest.TestCase):
    def test_mid_range(self):
        # latency 35, jitter 20, loss 20, download 7.5
        v = score_gaming(35, 10, 0.25, 7.5)
        self.assertAlmostEqual(v.score, 82.5)
        self.assertEqual(v.grade, Grade.GREAT)
        self.assertEqual(v.scenario, GAMING)

    def test_heavy_loss(self):
        v = score_gaming(20, 5, 5, 10)
        self.assertAlmostEqual(v.score, 75.0)
        self.assertEqual(v.grade, Grade.GOOD)


class TestRtc(unittest.TestCase):
    def test_mid_range(self):
        # latency 25, jitter 25, loss 25, upload 12.5
        v = score_rtc(45, 15, 0, 3.5)
        self.assertAlmostEqual(v.score, 87.5)
        self.assertEqual(v.scenario, RTC)

    def test_slow_upload(self):
        self.assertAlmostEqual(score_rtc(None, None, None, 1.5).score, 7.5)
        self.assertAlmostEqual(score_rtc(None, None, None, 0.5).score, 2.5)


class TestCombined(unittest.TestCase):
    def test_all_missing(self):
        q = score()
        for verdict in q:
            self.assertEqual(verdict.score, 0.0)
            self.assertEqual(verdict.grade, Grade.BAD)

    def test_missing_download_lowers_streaming_by_its_weight(self):
        full = score(latency_ms=10, jitter_ms=1, packet_loss_percent=0,
                     download_mbps=100, upload_mbps=10)
        partial = score(latency_ms=10, jitter_ms=1, packet_loss_percent=0,
                        download_mbps=None, upload_mbps=10)
        self.assertAlmostEqual(full.streaming.score - partial.streaming.score, 60.0)
        self.assertAlmostEqual(full.gaming.score - partial.gaming.score, 10.0)
        self.assertAlmostEqual(full.rtc.score, partial.rtc.score)

    def test_loaded_latency_has_no_weight(self):
        a = score(latency_ms=40, jitter_ms=8, packet_loss_percent=0,
                  download_mbps=30, upload_mbps=3)
        b = score(latency_ms=40, jitter_ms=8, packet_loss_percent=0,
                  download_mbps=30, upload_mbps=3, loaded_latency_ms=900)
        self.assertEqual(a, b)

    def test_scores_stay_in_range(self):
        for args in ((0, 0, 0, 0, 0), (1e6, 1e6, 100, 1e6, 1e6), (5, 50, 1.5, 0.1, 0.1)):
            for verdict in score(*args):
                self.assertGreaterEqual(verdict.score, 0.0)
                self.assertLessEqual(verdict.score, 100.0)

    def test_score_bundle(self):
        bundle = MeasurementBundle(download_mbps=60, upload_mbps=10, latency_ms=10,
                                   jitter_ms=1, packet_loss_percent=0)
        q = score_bundle(bundle)
        self.assertEqual(q.streaming.grade, Grade.GREAT)
        self.assertAlmostEqual(q.rtc.score, 100.0)
        self.assertAlmostEqual(q.gaming.score, 100.0)


if __name__ == "__main__":
    unittest.main()
