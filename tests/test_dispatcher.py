import asyncio
import json
import unittest
from unittest import mock

from offline_agent.config.models import NotificationDefaults
from offline_agent.push.dispatcher import NotificationDispatcher, parse_payload
from offline_agent.core.errors import PayloadParseError
from offline_agent.push.local import ClientViewRegistry, InMemoryNotificationSurface

from tests.fakes import ORIGIN, RecordingOpener


def payload(**fields) -> bytes:
    return json.dumps(fields).encode("utf-8")


class ParsePayloadTests(unittest.TestCase):
    def test_missing_fields_take_defaults(self) -> None:
        intent = parse_payload(b"{}", NotificationDefaults())

        self.assertEqual(intent.title, "U-sistem")
        self.assertEqual(intent.body, "")
        self.assertEqual(intent.icon, "/icon-192.png")
        self.assertEqual(intent.badge, "/icon-192.png")
        self.assertEqual(intent.tag, "default")
        self.assertEqual(intent.target_url(), "/")
        self.assertEqual(intent.vibrate, (200, 100, 200))
        self.assertTrue(intent.require_interaction)

    def test_reads_all_wire_fields(self) -> None:
        intent = parse_payload(
            payload(
                title="Reminder",
                body="Anna - Haircut at 14:00",
                icon="/i.png",
                badge="/b.png",
                tag="record-7",
                data={"url": "/day/2024-05-01", "recordId": 7},
            ),
            NotificationDefaults(),
        )

        self.assertEqual(intent.title, "Reminder")
        self.assertEqual(intent.tag, "record-7")
        self.assertEqual(intent.target_url(), "/day/2024-05-01")
        self.assertEqual(intent.data["recordId"], 7)

    def test_rejects_malformed_bodies(self) -> None:
        nested = b"[" * 2000 + b"]" * 2000
        oversized = payload(body="x" * 5000)
        for raw in (
            None,
            b"",
            b"not json",
            b"[1, 2]",
            b"\xff\xfe",
            payload(title=5),
            payload(data={"url": 3}),
            nested,
            oversized,
        ):
            with self.subTest(raw=raw):
                with self.assertRaises(PayloadParseError):
                    parse_payload(raw, NotificationDefaults())

    def test_decoder_recursion_is_a_parse_error(self) -> None:
        with mock.patch("offline_agent.push.dispatcher.json.loads", side_effect=RecursionError("too deep")):
            with self.assertRaises(PayloadParseError):
                parse_payload(b'{"title": "x"}', NotificationDefaults())


class NotificationDispatcherTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.surface = InMemoryNotificationSurface()
        self.opener = RecordingOpener()
        self.views = ClientViewRegistry(opener=self.opener)
        self.dispatcher = NotificationDispatcher(
            surface=self.surface,
            views=self.views,
            origin=ORIGIN,
            defaults=NotificationDefaults(),
        )

    async def test_same_tag_replaces_visible_notification(self) -> None:
        await self.dispatcher.handle_push(payload(tag="record-1", body="first"))
        await self.dispatcher.handle_push(payload(tag="record-1", body="second"))

        visible = self.surface.visible()
        self.assertEqual(len(visible), 1)
        self.assertEqual(visible[0].intent.body, "second")

    async def test_different_tags_stack(self) -> None:
        await self.dispatcher.handle_push(payload(tag="record-1"))
        await self.dispatcher.handle_push(payload(tag="record-2"))

        self.assertEqual(len(self.surface.visible()), 2)

    async def test_malformed_pushes_are_dropped_and_counted(self) -> None:
        deeply_nested = b"[" * 200000 + b"]" * 200000
        for raw in (None, b"garbage", b'"text"', payload(tag=["x"]), deeply_nested):
            self.assertIsNone(await self.dispatcher.handle_push(raw))

        self.assertEqual(self.surface.visible(), [])
        self.assertEqual(self.dispatcher.dropped_payloads, 5)

    async def test_click_closes_and_opens_new_view(self) -> None:
        notification = await self.dispatcher.handle_push(payload(data={"url": "/day/2024-05-01"}))
        assert notification is not None

        await self.dispatcher.handle_click(notification)

        self.assertEqual(self.surface.visible(), [])
        self.assertEqual(self.opener.opened, [f"{ORIGIN}/day/2024-05-01"])

    async def test_click_focuses_existing_view(self) -> None:
        await self.views.open_window(f"{ORIGIN}/clients")
        notification = await self.dispatcher.handle_push(payload(data={"url": "/day/2024-05-02"}))
        assert notification is not None

        await self.dispatcher.handle_click(notification)

        view = self.views.match_all(ORIGIN)[0]
        self.assertEqual(view.url, f"{ORIGIN}/day/2024-05-02")
        self.assertTrue(view.focused)
        self.assertEqual(len(self.opener.opened), 1)

    async def test_concurrent_clicks_open_a_single_view(self) -> None:
        first = await self.dispatcher.handle_push(payload(tag="a"))
        second = await self.dispatcher.handle_push(payload(tag="b", data={"url": "/salary"}))
        assert first is not None and second is not None

        await asyncio.gather(self.dispatcher.handle_click(first), self.dispatcher.handle_click(second))

        self.assertEqual(len(self.opener.opened), 1)
        self.assertEqual(len(self.views.match_all(ORIGIN)), 1)

    async def test_click_target_on_other_origin_falls_back_to_root(self) -> None:
        notification = await self.dispatcher.handle_push(payload(data={"url": "https://evil.test/phish"}))
        assert notification is not None

        await self.dispatcher.handle_click(notification)

        self.assertEqual(self.opener.opened, [f"{ORIGIN}/"])


if __name__ == "__main__":
    unittest.main()
