"""Download / upload testers against a local aiohttp server."""

import asyncio
import socket
import time
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer

from netgauge.cancel import CancelToken
from netgauge.download import DownloadTester
from netgauge.errors import MeasurementCancelled, TransferFailed, TransferTimeout
from netgauge.latency import LatencyProbe, LatencyTester
from netgauge.models import Endpoint
from netgauge.sampling import Direction
from netgauge.throughput import ThroughputProbe
from netgauge.upload import UploadTester


class SteppingClock:
    """Advances by a fixed step on every read."""

    def __init__(self, step=0.125):
        self.step = step
        self.now = 0.0

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


class FixedProbe(LatencyProbe):
    def __init__(self, rtt):
        self.rtt = rtt
        self.calls = 0

    async def probe_once(self, target, timeout):
        self.calls += 1
        await asyncio.sleep(0)
        return self.rtt


def _closed_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class LocalServerCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.status = 200
        self.ack_delay = 0.0
        self.received = 0

        async def down(request):
            if self.status != 200:
                return web.Response(status=self.status)
            n = int(request.query["bytes"])
            return web.Response(body=b"\0" * n, content_type="application/octet-stream")

        async def down_slow(request):
            resp = web.StreamResponse()
            await resp.prepare(request)
            for _ in range(40):
                await resp.write(b"x")
                await asyncio.sleep(0.05)
            return resp

        async def up(request):
            body = await request.read()
            self.received = len(body)
            if self.ack_delay:
                await asyncio.sleep(self.ack_delay)
            return web.Response(status=self.status, text="ok")

        app = web.Application(client_max_size=64 * 1024 * 1024)
        app.router.add_get("/__down", down)
        app.router.add_post("/__up", up)
        slow = web.Application()
        slow.router.add_get("/__down", down_slow)

        self.server = TestServer(app, host="127.0.0.1")
        await self.server.start_server()
        self.endpoint = Endpoint("127.0.0.1", self.server.port, "http")
        self.slow_server = TestServer(slow, host="127.0.0.1")
        await self.slow_server.start_server()
        self.slow_endpoint = Endpoint("127.0.0.1", self.slow_server.port, "http")

    async def asyncTearDown(self):
        await self.server.close()
        await self.slow_server.close()


class TestDownload(LocalServerCase):
    async def test_transfers_all_bytes(self):
        samples = []
        tester = DownloadTester(self.endpoint, 1_000_000, 0.25, 5.0, clock=SteppingClock())
        tester.on_sample = samples.append
        result = await tester.test()
        self.assertEqual(result.bytes_total, 1_000_000)
        self.assertEqual(result.direction, Direction.DOWNLOAD)
        self.assertFalse(result.timed_out)
        self.assertTrue(result.samples)
        self.assertEqual(samples, result.samples)
        for s in result.samples:
            self.assertGreaterEqual(s.timestamp_offset_ms, 500)
        self.assertGreater(result.speed_mbps, 0.0)

    async def test_bad_status(self):
        self.status = 503
        with self.assertRaises(TransferFailed) as ctx:
            await DownloadTester(self.endpoint, 100_000, 0.25, 5.0).test()
        self.assertEqual(ctx.exception.status, 503)
        self.assertFalse(ctx.exception.connectivity)

    async def test_refused_is_connectivity(self):
        endpoint = Endpoint("127.0.0.1", _closed_port(), "http")
        with self.assertRaises(TransferFailed) as ctx:
            await DownloadTester(endpoint, 100_000, 0.25, 5.0).test()
        self.assertTrue(ctx.exception.connectivity)

    async def test_pre_cancelled(self):
        token = CancelToken()
        token.cancel()
        with self.assertRaises(MeasurementCancelled):
            await DownloadTester(self.endpoint, 100_000, 0.25, 5.0).test(token)

    async def test_cancel_mid_transfer(self):
        token = CancelToken()
        tester = DownloadTester(self.endpoint, 4_000_000, 0.25, 5.0, clock=SteppingClock())
        tester.on_sample = lambda sample: token.cancel()
        with self.assertRaises(MeasurementCancelled):
            await tester.test(token)

    async def test_loaded_latency_joined(self):
        seen = []

        async def loaded(token):
            return 42.0

        tester = DownloadTester(self.endpoint, 200_000, 0.25, 5.0)
        tester.on_loaded_latency = seen.append
        result = await tester.test(loaded_latency=loaded)
        self.assertEqual(result.loaded_latency_ms, 42.0)
        self.assertEqual(seen, [42.0])

    async def test_timeout_without_samples(self):
        with self.assertRaises(TransferTimeout):
            await DownloadTester(self.slow_endpoint, 1_000_000, 0.25, 0.3).test()


class TestUpload(LocalServerCase):
    async def test_transfers_all_bytes(self):
        tester = UploadTester(self.endpoint, 1_000_000, 0.25, 5.0, clock=SteppingClock())
        result = await tester.test()
        self.assertEqual(result.bytes_total, 1_000_000)
        self.assertEqual(self.received, 1_000_000)
        self.assertEqual(result.direction, Direction.UPLOAD)
        self.assertGreaterEqual(len(result.samples), 3)

    async def test_short_upload_flushes_tail(self):
        # two chunks, both before force_after: only the tail flush samples
        tester = UploadTester(self.endpoint, 64 * 1024, 0.25, 5.0, clock=SteppingClock(0.01))
        result = await tester.test()
        self.assertEqual(len(result.samples), 1)
        self.assertEqual(result.bytes_total, 64 * 1024)

    async def test_acknowledgment_not_timed(self):
        self.ack_delay = 0.5
        start = time.perf_counter()
        result = await UploadTester(self.endpoint, 256 * 1024, 0.25, 5.0).test()
        wall = time.perf_counter() - start
        self.assertGreaterEqual(wall, 0.5)
        self.assertLess(result.duration_ms, 450)

    async def test_bad_status(self):
        self.status = 500
        with self.assertRaises(TransferFailed) as ctx:
            await UploadTester(self.endpoint, 100_000, 0.25, 5.0).test()
        self.assertEqual(ctx.exception.status, 500)

    async def test_pre_cancelled(self):
        token = CancelToken()
        token.cancel()
        with self.assertRaises(MeasurementCancelled):
            await UploadTester(self.endpoint, 100_000, 0.25, 5.0).test(token)


class TestThroughputProbe(LocalServerCase):
    async def test_download_with_loaded_latency(self):
        probe = FixedProbe(30.0)
        throughput = ThroughputProbe(
            self.endpoint,
            latency=LatencyTester(probe, self.endpoint),
            loaded_latency_count=3,
            loaded_latency_delay=0,
        )
        seen = []
        mbps = await throughput.measure(
            Direction.DOWNLOAD, 500_000, 0.25, 5.0, on_loaded_latency=seen.append
        )
        self.assertGreater(mbps, 0.0)
        self.assertEqual(throughput.last_result.bytes_total, 500_000)
        self.assertEqual(seen, [30.0])
        self.assertEqual(probe.calls, 4)

    async def test_upload_skips_loaded_latency(self):
        probe = FixedProbe(30.0)
        throughput = ThroughputProbe(self.endpoint, latency=LatencyTester(probe, self.endpoint))
        mbps = await throughput.measure("upload", 200_000, 0.25, 5.0)
        self.assertGreater(mbps, 0.0)
        self.assertEqual(throughput.last_result.direction, Direction.UPLOAD)
        self.assertEqual(probe.calls, 0)

    async def test_zero_loaded_latency_count(self):
        probe = FixedProbe(30.0)
        throughput = ThroughputProbe(
            self.endpoint, latency=LatencyTester(probe, self.endpoint), loaded_latency_count=0
        )
        await throughput.measure(Direction.DOWNLOAD, 200_000, 0.25, 5.0)
        self.assertIsNone(throughput.last_result.loaded_latency_ms)
        self.assertEqual(probe.calls, 0)


if __name__ == "__main__":
    unittest.main()
