"""Tests for notification decoding and listener delivery."""
from __future__ import annotations

import unittest
from typing import List, Tuple

from magmon.notifications import NotificationHandler, StatusListenerSlot, decode_status
from magmon.registry import DeviceRegistry, SensorStatus

from fakes import settle


def test_decode_status():
    assert decode_status(b"\x00") is SensorStatus.OPEN
    assert decode_status(b"\x01") is SensorStatus.CLOSED
    assert decode_status(b"\x02") is SensorStatus.UNKNOWN
    assert decode_status(b"\xff\x00") is SensorStatus.UNKNOWN
    assert decode_status(b"\x01\x00") is SensorStatus.CLOSED
    assert decode_status(b"") is SensorStatus.UNKNOWN


class NotificationHandlerTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.registry = DeviceRegistry()
        self.record = self.registry.register("aa:bb:cc:dd:ee:ff")
        self.slot = StatusListenerSlot()
        self.handler = NotificationHandler(self.registry, self.slot)
        self.received: List[Tuple[str, SensorStatus]] = []

    def _listener(self, address: str, status: SensorStatus) -> None:
        self.received.append((address, status))

    async def test_updates_record_and_notifies_listener(self) -> None:
        self.slot.set(self._listener)

        self.handler.handle("aabbccddeeff", b"\x00")
        self.assertIs(self.record.sensor_status, SensorStatus.OPEN)

        self.handler.handle("aabbccddeeff", b"\x01")
        self.assertIs(self.record.sensor_status, SensorStatus.CLOSED)

        self.assertEqual(
            self.received,
            [("aabbccddeeff", SensorStatus.OPEN), ("aabbccddeeff", SensorStatus.CLOSED)],
        )

    async def test_unexpected_payload_keeps_status_and_reports_unknown(self) -> None:
        self.slot.set(self._listener)
        self.handler.handle("aabbccddeeff", b"\x01")

        with self.assertLogs("magmon.notifications", level="WARNING"):
            self.handler.handle("aabbccddeeff", b"\x05")

        self.assertIs(self.record.sensor_status, SensorStatus.CLOSED)
        self.assertEqual(self.received[-1], ("aabbccddeeff", SensorStatus.UNKNOWN))

    async def test_listener_failure_is_isolated(self) -> None:
        def broken(address: str, status: SensorStatus) -> None:
            raise RuntimeError("listener exploded")

        self.slot.set(broken)
        with self.assertLogs("magmon.notifications", level="ERROR"):
            self.handler.handle("aabbccddeeff", b"\x00")

        self.assertIs(self.record.sensor_status, SensorStatus.OPEN)

    async def test_coroutine_listener_is_scheduled(self) -> None:
        async def listener(address: str, status: SensorStatus) -> None:
            self.received.append((address, status))

        self.slot.set(listener)
        self.handler.handle("aabbccddeeff", b"\x01")
        await settle()

        self.assertEqual(self.received, [("aabbccddeeff", SensorStatus.CLOSED)])

    async def test_failing_coroutine_listener_is_logged(self) -> None:
        async def listener(address: str, status: SensorStatus) -> None:
            raise RuntimeError("async listener exploded")

        self.slot.set(listener)
        with self.assertLogs("magmon.notifications", level="ERROR"):
            self.handler.handle("aabbccddeeff", b"\x00")
            await settle()
        self.assertIs(self.record.sensor_status, SensorStatus.OPEN)

    async def test_replacing_listener_keeps_a_single_slot(self) -> None:
        other: List[Tuple[str, SensorStatus]] = []
        self.slot.set(self._listener)
        self.slot.set(lambda address, status: other.append((address, status)))

        self.handler.handle("aabbccddeeff", b"\x00")

        self.assertEqual(self.received, [])
        self.assertEqual(other, [("aabbccddeeff", SensorStatus.OPEN)])

        self.slot.set(None)
        self.handler.handle("aabbccddeeff", b"\x01")
        self.assertEqual(len(other), 1)
        self.assertIs(self.record.sensor_status, SensorStatus.CLOSED)

    async def test_notification_for_unregistered_address_is_dropped(self) -> None:
        self.slot.set(self._listener)
        self.registry.unregister("aabbccddeeff")

        self.handler.handle("aabbccddeeff", b"\x00")

        self.assertEqual(self.received, [])


if __name__ == "__main__":
    unittest.main()
