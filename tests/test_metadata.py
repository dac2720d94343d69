"""Tests for netgauge.metadata -- parsing, merging and the fallback client."""

import asyncio
import socket
import time
import unittest

from aiohttp import web
from aiohttp.test_utils import TestServer

from netgauge.errors import MetadataUnavailable
from netgauge.metadata import (
    MetadataClient,
    city_for_colo,
    is_complete,
    merge_metadata,
    parse_meta,
    parse_trace,
)
from netgauge.models import Endpoint, NetworkMetadata

TRACE = """fl=123f45
h=speed.cloudflare.com
ip=203.0.113.7
ts=1700000000.123
visit_scheme=https
colo=SIN
http=http/2
loc=SG
tls=TLSv1.3
"""

META = {
    "clientIp": "2001:db8::1",
    "asn": 13335,
    "asOrganization": "Example Net",
    "country": "US",
    "colo": {"iata": "LAX", "city": "Los Angeles"},
    "httpProtocol": "HTTP/1.1",
}


class TestParsing(unittest.TestCase):
    def test_parse_trace(self):
        meta = parse_trace(TRACE)
        self.assertEqual(meta.ip, "203.0.113.7")
        self.assertEqual(meta.connected_via, "IPv4")
        self.assertEqual(meta.colo, "SIN")
        self.assertEqual(meta.server_location, "Singapore")
        self.assertEqual(meta.country, "SG")
        self.assertEqual(meta.tls_version, "TLSv1.3")
        self.assertEqual(meta.http_version, "http/2")
        self.assertIsNone(meta.asn)

    def test_parse_trace_ignores_garbage(self):
        meta = parse_trace("no equals here\n=orphan\nip=10.0.0.1")
        self.assertEqual(meta.ip, "10.0.0.1")

    def test_parse_meta(self):
        meta = parse_meta(META)
        self.assertEqual(meta.ip, "2001:db8::1")
        self.assertEqual(meta.connected_via, "IPv6")
        self.assertEqual(meta.asn, "AS13335")
        self.assertEqual(meta.network_name, "Example Net")
        self.assertEqual(meta.server_location, "Los Angeles")
        self.assertEqual(meta.colo, "LAX")

    def test_parse_meta_string_colo(self):
        meta = parse_meta({"colo": "fra"})
        self.assertEqual(meta.server_location, "Frankfurt")
        self.assertIsNone(meta.ip)

    def test_unknown_colo_passes_through(self):
        self.assertEqual(city_for_colo("XYZ"), "XYZ")
        self.assertIsNone(city_for_colo(None))

    def test_merge_primary_wins(self):
        primary = NetworkMetadata(ip="1.1.1.1", asn="AS1")
        secondary = NetworkMetadata(ip="2.2.2.2", tls_version="TLSv1.3", server_location="Paris")
        merged = merge_metadata(primary, secondary)
        self.assertEqual(merged.ip, "1.1.1.1")
        self.assertEqual(merged.asn, "AS1")
        self.assertEqual(merged.tls_version, "TLSv1.3")
        self.assertEqual(merged.server_location, "Paris")
        self.assertEqual(merge_metadata(None, secondary), secondary)
        self.assertEqual(merge_metadata(primary, None), primary)

    def test_is_complete(self):
        self.assertTrue(is_complete(parse_meta(META)))
        self.assertFalse(is_complete(parse_trace(TRACE)))
        self.assertFalse(is_complete(None))


class TestMetadataClient(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.meta_doc = dict(META)
        self.meta_status = 200
        self.trace_status = 200
        self.hits = {"meta": 0, "trace": 0}
        self.meta_hangs = False
        self.release = asyncio.Event()

        async def meta(request):
            self.hits["meta"] += 1
            if self.meta_hangs:
                await self.release.wait()
            if self.meta_status != 200:
                return web.Response(status=self.meta_status)
            return web.json_response(self.meta_doc)

        async def trace(request):
            self.hits["trace"] += 1
            if self.trace_status != 200:
                return web.Response(status=self.trace_status)
            return web.Response(text=TRACE)

        app = web.Application()
        app.router.add_get("/meta", meta)
        app.router.add_get("/cdn-cgi/trace", trace)
        self.server = TestServer(app, host="127.0.0.1")
        await self.server.start_server()
        self.endpoint = Endpoint("127.0.0.1", self.server.port, "http")

    async def asyncTearDown(self):
        self.release.set()
        await self.server.close()

    async def test_complete_meta_skips_trace(self):
        async with MetadataClient(self.endpoint, retries=0) as client:
            meta = await client.fetch()
        self.assertEqual(meta.asn, "AS13335")
        self.assertEqual(self.hits["trace"], 0)

    async def test_partial_meta_merged_with_trace(self):
        self.meta_doc = {"clientIp": "198.51.100.4", "asOrganization": "Partial ISP"}
        async with MetadataClient(self.endpoint, retries=0) as client:
            meta = await client.fetch()
        self.assertEqual(meta.ip, "198.51.100.4")
        self.assertEqual(meta.network_name, "Partial ISP")
        self.assertEqual(meta.tls_version, "TLSv1.3")
        self.assertEqual(meta.server_location, "Singapore")
        self.assertEqual(self.hits["trace"], 1)

    async def test_meta_error_falls_back_to_trace(self):
        self.meta_status = 500
        async with MetadataClient(self.endpoint, retries=1) as client:
            meta = await client.fetch()
        self.assertEqual(meta.ip, "203.0.113.7")
        self.assertEqual(self.hits["meta"], 2)

    async def test_hung_meta_leaves_time_for_trace(self):
        self.meta_hangs = True
        started = time.monotonic()
        async with MetadataClient(self.endpoint, timeout=1.0, retries=1) as client:
            meta = await asyncio.wait_for(client.fetch(), timeout=1.0)
        self.assertEqual(meta.ip, "203.0.113.7")
        self.assertEqual(meta.server_location, "Singapore")
        self.assertEqual(self.hits["trace"], 1)
        self.assertLess(time.monotonic() - started, 1.0)

    def test_budget_split(self):
        client = MetadataClient(self.endpoint, timeout=5.0, retries=1)
        self.assertLess(2 * client.source_budget, client.timeout)
        self.assertAlmostEqual(client.request_timeout * 2, client.source_budget)

    async def test_partial_meta_kept_when_trace_fails(self):
        self.meta_doc = {"clientIp": "198.51.100.4"}
        self.trace_status = 502
        async with MetadataClient(self.endpoint, retries=0) as client:
            meta = await client.fetch()
        self.assertEqual(meta.ip, "198.51.100.4")

    async def test_both_fail(self):
        self.meta_status = 500
        self.trace_status = 500
        async with MetadataClient(self.endpoint, retries=0) as client:
            with self.assertRaises(MetadataUnavailable) as ctx:
                await client.fetch()
        self.assertFalse(ctx.exception.connectivity)

    async def test_unreachable_is_connectivity(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()
        async with MetadataClient(Endpoint("127.0.0.1", port, "http"), retries=0) as client:
            with self.assertRaises(MetadataUnavailable) as ctx:
                await client.fetch()
        self.assertTrue(ctx.exception.connectivity)

    async def test_requires_context(self):
        with self.assertRaises(RuntimeError):
            await MetadataClient(self.endpoint).fetch()


if __name__ == "__main__":
    unittest.main()
