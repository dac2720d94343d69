"""Tests for netgauge.models and netgauge.errors."""

import asyncio
import errno
import json
import socket
import unittest

from netgauge.errors import (
    AllProbesFailed,
    MeasurementCancelled,
    MeasurementError,
    NoConnectivity,
    PhaseFailed,
    ProbeFailure,
    TransferFailed,
    describe,
    is_connectivity_error,
)
from netgauge.models import (
    Endpoint,
    HostProbeResult,
    LatencySample,
    MeasurementBundle,
    Phase,
    PhaseResult,
    PhaseStatus,
    Sample,
    SampleKind,
    ThroughputSample,
)


class TestEndpoint(unittest.TestCase):
    def test_default_urls(self):
        ep = Endpoint()
        self.assertEqual(ep.download_url(1000),
                         "https://speed.cloudflare.com:443/__down?bytes=1000")
        self.assertEqual(ep.upload_url, "https://speed.cloudflare.com:443/__up")
        self.assertEqual(ep.meta_url, "https://speed.cloudflare.com:443/meta")
        self.assertEqual(ep.trace_url, "https://speed.cloudflare.com:443/cdn-cgi/trace")
        self.assertEqual(ep.ws_url, "wss://speed.cloudflare.com:443/ws")

    def test_plain_http_uses_ws(self):
        self.assertEqual(Endpoint("127.0.0.1", 8080, "http").ws_url, "ws://127.0.0.1:8080/ws")

    def test_from_dict_host_with_port(self):
        ep = Endpoint.from_dict({"host": "example.com:8080", "scheme": "http"})
        self.assertEqual(ep, Endpoint("example.com", 8080, "http"))

    def test_from_dict_defaults(self):
        self.assertEqual(Endpoint.from_dict({}), Endpoint())
        self.assertEqual(Endpoint.from_dict({"hostname": "a.test", "scheme": "http"}).port, 80)

    def test_to_dict_round_trip(self):
        ep = Endpoint("a.test", 8443, "https")
        self.assertEqual(Endpoint.from_dict(ep.to_dict()), ep)


class TestSamples(unittest.TestCase):
    def test_kinds(self):
        t = ThroughputSample(250, 94.5)
        lat = LatencySample(12, 18.25)
        self.assertEqual(t.kind, SampleKind.THROUGHPUT)
        self.assertEqual(lat.kind, SampleKind.LATENCY)
        self.assertEqual(t.mbps, 94.5)
        self.assertEqual(lat.rtt_ms, 18.25)
        self.assertEqual(lat.to_dict(), {"kind": "latency", "t_ms": 12, "value": 18.25})

    def test_base_sample_has_no_kind(self):
        bare = Sample(5, 1.0)
        self.assertIsNone(bare.kind)
        self.assertIsNone(bare.to_dict()["kind"])
        self.assertNotEqual(ThroughputSample(5, 1.0).kind, bare.kind)


class TestPhaseResult(unittest.TestCase):
    def test_constructors(self):
        self.assertTrue(PhaseResult.success(3).is_success)
        failed = PhaseResult.failed("HTTP 503")
        self.assertEqual(failed.status, PhaseStatus.FAILED)
        self.assertEqual(failed.to_dict(), {"status": "failed", "reason": "HTTP 503"})
        self.assertEqual(PhaseResult.timed_out().status, PhaseStatus.TIMED_OUT)
        self.assertEqual(PhaseResult.canceled().status, PhaseStatus.CANCELED)
        self.assertEqual(PhaseResult.success().to_dict(), {"status": "success"})


class TestBundle(unittest.TestCase):
    def test_empty(self):
        b = MeasurementBundle()
        self.assertTrue(b.is_empty)
        self.assertFalse(b.has_download)
        self.assertFalse(b.has_latency)

    def test_to_dict(self):
        b = MeasurementBundle(
            download_mbps=93.456,
            latency_ms=12.34,
            download_series=(ThroughputSample(500, 90.0),),
            phase_results={Phase.DOWNLOAD: PhaseResult.success(),
                           Phase.UPLOAD: PhaseResult.failed("boom")},
        )
        d = b.to_dict()
        self.assertEqual(d["download_mbps"], 93.46)
        self.assertEqual(d["latency_ms"], 12.3)
        self.assertIsNone(d["upload_mbps"])
        self.assertEqual(d["phases"]["upload"]["status"], "failed")
        self.assertEqual(len(d["download_series"]), 1)
        json.dumps(d)
        self.assertFalse(b.is_empty)
        self.assertTrue(b.has_download)
        self.assertFalse(b.has_upload)


class TestHostProbeResult(unittest.TestCase):
    def test_numeric_sort(self):
        hosts = [HostProbeResult("192.168.1.10", True), HostProbeResult("192.168.1.9", True),
                 HostProbeResult("192.168.1.100", True)]
        ordered = [h.address for h in sorted(hosts, key=lambda h: h.sort_key)]
        self.assertEqual(ordered, ["192.168.1.9", "192.168.1.10", "192.168.1.100"])

    def test_with_hostname(self):
        h = HostProbeResult("10.0.0.1", True, 1.234).with_hostname("router.lan")
        self.assertEqual(h.hostname, "router.lan")
        self.assertEqual(h.to_dict()["rtt_ms"], 1.23)


class TestErrors(unittest.TestCase):
    def test_connectivity_classification(self):
        self.assertTrue(is_connectivity_error(socket.gaierror(-2, "Name or service not known")))
        self.assertTrue(is_connectivity_error(ConnectionRefusedError()))
        self.assertTrue(is_connectivity_error(OSError(errno.ENETUNREACH, "unreachable")))
        self.assertFalse(is_connectivity_error(ValueError("bad")))
        self.assertFalse(is_connectivity_error(OSError(errno.EPIPE, "broken pipe")))

    def test_cause_sets_flag(self):
        self.assertTrue(ProbeFailure("x", cause=ConnectionRefusedError()).connectivity)
        self.assertFalse(ProbeFailure("x", cause=ValueError()).connectivity)
        self.assertFalse(ProbeFailure("x", cause=ConnectionRefusedError(),
                                      connectivity=False).connectivity)
        self.assertTrue(AllProbesFailed("none").connectivity)
        self.assertTrue(NoConnectivity().connectivity)

    def test_transfer_failed_message(self):
        exc = TransferFailed(status=503)
        self.assertEqual(str(exc), "HTTP 503")
        self.assertEqual(exc.status, 503)
        self.assertFalse(exc.connectivity)

    def test_phase_failed(self):
        exc = PhaseFailed("download", "HTTP 503")
        self.assertEqual(str(exc), "download phase failed: HTTP 503")
        self.assertEqual(exc.phase, "download")

    def test_cancelled_is_not_an_error(self):
        self.assertFalse(issubclass(MeasurementCancelled, MeasurementError))

    def test_describe(self):
        self.assertEqual(describe(asyncio.TimeoutError()), "timed out")
        self.assertEqual(describe(TransferFailed(status=500)), "HTTP 500")
        self.assertEqual(describe(RuntimeError()), "RuntimeError")


if __name__ == "__main__":
    unittest.main()
