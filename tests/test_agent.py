import asyncio
import json
import tempfile
import unittest
from pathlib import Path

from offline_agent.agent import OfflineAgent
from offline_agent.config.models import AppConfig
from offline_agent.core.errors import SeedError
from offline_agent.core.http import Request
from offline_agent.push.local import ClientViewRegistry

from tests.fakes import ORIGIN, FakeFetcher, FakeRegistry, RecordingOpener, encrypt_push


def build_config(root: Path, *, cache_name: str = "u-sistem-v4") -> AppConfig:
    return AppConfig.model_validate(
        {
            "app": {"origin": ORIGIN},
            "logging": {"level": "INFO", "file": {"path": "", "rotation": {"backup_count": 1}}},
            "cache": {"name": cache_name, "root_dir": str(root / "cache"), "manifest": ["/", "/a.js"]},
            "push": {"permission": "granted", "state_path": str(root / "push" / "subscription.json")},
        }
    )


class OfflineAgentTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.fetcher = FakeFetcher()
        self.fetcher.set(f"{ORIGIN}/", body=b"<html>root</html>")
        self.fetcher.set(f"{ORIGIN}/a.js", body=b"bundle v4")
        self.registry = FakeRegistry()
        self.opener = RecordingOpener()
        self.agents: list[OfflineAgent] = []

    async def asyncTearDown(self) -> None:
        for gate in self.fetcher.gates.values():
            gate.set()
        for agent in self.agents:
            await agent.close()
        self._tmp.cleanup()

    def _agent(self, cache_name: str = "u-sistem-v4") -> OfflineAgent:
        agent = OfflineAgent(
            build_config(self.root, cache_name=cache_name),
            fetcher=self.fetcher,
            registry=self.registry,
            views=ClientViewRegistry(opener=self.opener),
        )
        self.agents.append(agent)
        return agent

    async def test_installed_assets_are_served_without_waiting_for_network(self) -> None:
        agent = self._agent()
        await agent.install()
        await agent.activate()

        current = agent.store.current()
        assert current is not None
        self.assertEqual(current.generation_id, "u-sistem-v4")

        # Hold the revalidation fetch open: the response must not depend on it.
        self.fetcher.gates[f"{ORIGIN}/a.js"] = asyncio.Event()
        result = await agent.router.handle(Request.build(f"{ORIGIN}/a.js"))

        self.assertEqual(result.body, b"bundle v4")
        self.assertTrue(result.from_cache)

    async def test_api_requests_always_hit_the_network(self) -> None:
        agent = self._agent()
        await agent.install()
        self.fetcher.set(f"{ORIGIN}/api/x", body=b"live")

        for _ in range(3):
            await agent.router.handle(Request.build(f"{ORIGIN}/api/x"))

        self.assertEqual(self.fetcher.calls_for(f"{ORIGIN}/api/x"), 3)

    async def test_upgrade_replaces_previous_generation(self) -> None:
        first = self._agent("u-sistem-v4")
        await first.install()
        await first.activate()

        self.fetcher.set(f"{ORIGIN}/a.js", body=b"bundle v5")
        second = self._agent("u-sistem-v5")
        await second.install()
        removed = await second.activate()

        self.assertEqual(removed, ["u-sistem-v4"])
        self.assertEqual([r.generation_id for r in second.store.generations()], ["u-sistem-v5"])
        entry = await second.store.match(Request.build(f"{ORIGIN}/a.js").identity)
        assert entry is not None
        self.assertEqual(entry.response.body, b"bundle v5")

    async def test_failed_upgrade_keeps_serving_previous_generation(self) -> None:
        first = self._agent("u-sistem-v4")
        await first.install()

        self.fetcher.fail(f"{ORIGIN}/a.js")
        second = self._agent("u-sistem-v5")
        with self.assertRaises(SeedError):
            await second.install()

        current = second.store.current()
        assert current is not None
        self.assertEqual(current.generation_id, "u-sistem-v4")

    async def test_push_round_trip_from_subscribe_to_click(self) -> None:
        agent = self._agent()
        outcome = await agent.subscriptions.subscribe()
        self.assertTrue(outcome)

        assert agent.push_service is not None
        subscription = await agent.push_service.get_subscription()
        assert subscription is not None
        token = subscription.endpoint.rsplit("/", 1)[1]
        body = json.dumps({"title": "Reminder", "tag": "record-3", "data": {"url": "/day/2024-05-01"}})
        await agent.push_service.deliver(token, encrypt_push(subscription, body.encode("utf-8")))

        visible = agent.surface.visible()
        self.assertEqual(len(visible), 1)
        await agent.dispatcher.handle_click(visible[0])

        self.assertEqual(agent.surface.visible(), [])
        self.assertEqual(self.opener.opened, [f"{ORIGIN}/day/2024-05-01"])
        self.assertEqual(self.registry.registered[0].endpoint, subscription.endpoint)


if __name__ == "__main__":
    unittest.main()
