import asyncio
import tempfile
import unittest

from offline_agent.cache.store import CacheStore
from offline_agent.core.errors import NetworkError, OfflineUnavailableError
from offline_agent.core.http import Request
from offline_agent.routing.router import RequestRouter

from tests.fakes import ORIGIN, FakeFetcher, response


class RequestRouterTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = CacheStore(self._tmp.name)
        self.fetcher = FakeFetcher()
        self.fetcher.set(f"{ORIGIN}/index.html", body=b"<html>shell</html>")
        self.fetcher.set(f"{ORIGIN}/a.js", body=b"cached js")
        self.handle = await self.store.open("app-v1")
        await self.store.seed(self.handle, [f"{ORIGIN}/index.html", f"{ORIGIN}/a.js"], self.fetcher)
        await self.store.promote("app-v1")
        self.fetcher.calls.clear()
        self.router = RequestRouter(store=self.store, fetcher=self.fetcher, origin=ORIGIN)

    async def asyncTearDown(self) -> None:
        for gate in self.fetcher.gates.values():
            gate.set()
        await self.router.drain()
        await self.store.close()
        self._tmp.cleanup()

    def test_policy_order(self) -> None:
        cases = [
            (Request.build(f"{ORIGIN}/api/clients", mode="navigate"), "network_only"),
            (Request.build(f"{ORIGIN}/api/clients"), "network_only"),
            (Request.build(f"{ORIGIN}/day/2024-01-01", mode="navigate"), "network_first"),
            (Request.build("https://cdn.other.test/lib.js", mode="navigate"), "network_first"),
            (Request.build(f"{ORIGIN}/a.js"), "stale_while_revalidate"),
            (Request.build("https://cdn.other.test/lib.js", mode="cors"), "passthrough"),
        ]
        for request, expected in cases:
            with self.subTest(url=str(request.url), mode=request.mode):
                self.assertEqual(self.router.determine_policy(request), expected)

    async def test_api_requests_never_touch_the_cache(self) -> None:
        url = f"{ORIGIN}/api/records"
        self.fetcher.set(url, body=b'{"live": true}')
        await self.store.put(self.handle, Request.build(url).identity, response(b"stale api"))
        before = self.store.entry_count(self.handle)

        for _ in range(5):
            result = await self.router.handle(Request.build(url))
            self.assertEqual(result.body, b'{"live": true}')

        self.assertEqual(self.fetcher.calls_for(url), 5)
        self.assertEqual(self.store.entry_count(self.handle), before)

    async def test_api_network_error_propagates_verbatim(self) -> None:
        error = NetworkError("connection refused")
        self.fetcher.fail(f"{ORIGIN}/api/records", error)

        with self.assertRaises(NetworkError) as ctx:
            await self.router.handle(Request.build(f"{ORIGIN}/api/records"))

        self.assertIs(ctx.exception, error)

    async def test_navigation_prefers_network(self) -> None:
        self.fetcher.set(f"{ORIGIN}/clients", body=b"fresh page")

        result = await self.router.handle(Request.build(f"{ORIGIN}/clients", mode="navigate"))

        self.assertEqual(result.body, b"fresh page")
        self.assertFalse(result.from_cache)

    async def test_navigation_falls_back_to_offline_document(self) -> None:
        result = await self.router.handle(Request.build(f"{ORIGIN}/clients", mode="navigate"))

        self.assertEqual(result.body, b"<html>shell</html>")
        self.assertTrue(result.from_cache)

    async def test_navigation_fails_without_offline_document(self) -> None:
        empty_store = CacheStore(f"{self._tmp.name}/empty")
        router = RequestRouter(store=empty_store, fetcher=self.fetcher, origin=ORIGIN)

        with self.assertRaises(OfflineUnavailableError):
            await router.handle(Request.build(f"{ORIGIN}/clients", mode="navigate"))

    async def test_stale_entry_is_returned_before_revalidation_completes(self) -> None:
        url = f"{ORIGIN}/a.js"
        self.fetcher.set(url, body=b"fresh js")
        gate = asyncio.Event()
        self.fetcher.gates[url] = gate

        early = await self.router.handle(Request.build(url))

        self.assertEqual(early.body, b"cached js")
        self.assertTrue(early.from_cache)

        gate.set()
        await self.router.drain()
        late = await self.router.handle(Request.build(url))

        self.assertEqual(late.body, b"fresh js")

    async def test_failed_revalidation_is_swallowed(self) -> None:
        url = f"{ORIGIN}/a.js"
        self.fetcher.fail(url)

        result = await self.router.handle(Request.build(url))
        await self.router.drain()

        self.assertEqual(result.body, b"cached js")
        entry = await self.store.match(Request.build(url).identity)
        assert entry is not None
        self.assertEqual(entry.response.body, b"cached js")

    async def test_unsuccessful_revalidation_keeps_cached_entry(self) -> None:
        url = f"{ORIGIN}/a.js"
        self.fetcher.set(url, body=b"server error", status=500)

        await self.router.handle(Request.build(url))
        await self.router.drain()

        entry = await self.store.match(Request.build(url).identity)
        assert entry is not None
        self.assertEqual(entry.response.body, b"cached js")

    async def test_cache_miss_waits_for_network_and_stores_result(self) -> None:
        url = f"{ORIGIN}/b.css"
        self.fetcher.set(url, body=b"body{}")

        result = await self.router.handle(Request.build(url))

        self.assertEqual(result.body, b"body{}")
        entry = await self.store.match(Request.build(url).identity)
        assert entry is not None
        self.assertEqual(entry.response.body, b"body{}")

    async def test_cache_miss_network_error_propagates(self) -> None:
        with self.assertRaises(NetworkError):
            await self.router.handle(Request.build(f"{ORIGIN}/missing.css"))

    async def test_non_get_same_origin_requests_are_not_cached(self) -> None:
        url = f"{ORIGIN}/upload"
        self.fetcher.set(url, body=b"ok")
        before = self.store.entry_count(self.handle)

        await self.router.handle(Request.build(url, method="POST", body=b"x"))

        self.assertEqual(self.store.entry_count(self.handle), before)

    async def test_cross_origin_requests_pass_through(self) -> None:
        url = "https://cdn.other.test/lib.js"
        self.fetcher.set(url, body=b"lib")
        before = self.store.entry_count(self.handle)

        result = await self.router.handle(Request.build(url, mode="cors"))

        self.assertEqual(result.body, b"lib")
        self.assertEqual(self.store.entry_count(self.handle), before)


if __name__ == "__main__":
    unittest.main()
