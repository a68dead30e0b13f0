"""Simulation tests for scanning: the adapter controller and the bleak radio."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List
from unittest import IsolatedAsyncioTestCase
from unittest.mock import patch

from magmon.connector import BleakPeripheral
from magmon.radio import POWERED_OFF, POWERED_ON
from magmon.scanner import AdapterController, BleakRadio

from fakes import FakeRadio, settle


class AdapterControllerTest(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.radio = FakeRadio()
        self.controller = AdapterController(self.radio, restart_interval=0.2)
        self.controller.attach()

    async def asyncTearDown(self) -> None:
        await self.controller.close()

    async def test_power_on_starts_unfiltered_scan_with_duplicates(self) -> None:
        await self.radio.open()
        await settle()

        self.assertTrue(self.controller.powered_on)
        self.assertEqual(self.radio.scan_calls, [(None, True)])
        self.assertTrue(self.controller.scanning)

    async def test_other_states_do_not_scan(self) -> None:
        self.radio.set_state(POWERED_OFF)
        await settle()
        await self.controller.start_scanning()

        self.assertEqual(self.radio.scan_calls, [])
        self.assertFalse(self.controller.powered_on)

    async def test_restart_requests_are_debounced(self) -> None:
        self.radio.set_state(POWERED_ON)
        await settle()
        self.radio.scan_starts.clear()
        loop = asyncio.get_running_loop()

        self.controller.schedule_restart()
        await asyncio.sleep(0.1)
        last_request = loop.time()
        self.controller.schedule_restart()

        await asyncio.sleep(0.15)
        self.assertEqual(self.radio.scan_starts, [])

        await asyncio.sleep(0.15)
        self.assertEqual(len(self.radio.scan_starts), 1)
        self.assertGreaterEqual(self.radio.scan_starts[0] - last_request, 0.19)

    async def test_stop_scanning_cancels_pending_restart(self) -> None:
        self.radio.set_state(POWERED_ON)
        await settle()
        self.controller.schedule_restart()
        self.assertTrue(self.controller.restart_pending)

        await self.controller.stop_scanning()

        self.assertFalse(self.controller.restart_pending)
        self.assertEqual(self.radio.scan_stops, 1)
        self.assertFalse(self.controller.scanning)
        await asyncio.sleep(0.3)
        self.assertEqual(len(self.radio.scan_calls), 1)

    async def test_failed_scan_start_is_retried(self) -> None:
        self.radio.start_error = RuntimeError("adapter busy")
        with self.assertLogs("magmon.scanner", level="WARNING"):
            self.radio.set_state(POWERED_ON)
            await settle()

        self.assertTrue(self.controller.restart_pending)
        self.assertFalse(self.controller.scanning)

        self.radio.start_error = None
        await asyncio.sleep(0.3)
        self.assertTrue(self.controller.scanning)
        self.assertEqual(len(self.radio.scan_starts), 1)

    async def test_power_loss_cancels_pending_restart(self) -> None:
        self.radio.set_state(POWERED_ON)
        await settle()
        self.controller.schedule_restart()

        self.radio.set_state(POWERED_OFF)

        self.assertFalse(self.controller.restart_pending)
        self.assertFalse(self.controller.scanning)

    async def test_close_stops_scanning_and_ignores_later_restarts(self) -> None:
        self.radio.set_state(POWERED_ON)
        await settle()

        await self.controller.close()
        self.controller.schedule_restart()

        self.assertEqual(self.radio.scan_stops, 1)
        self.assertFalse(self.controller.restart_pending)

    async def test_stop_during_scan_start_waits_and_stops(self) -> None:
        self.radio.start_delay = 0.05
        self.radio.set_state(POWERED_ON)
        await asyncio.sleep(0.01)

        await self.controller.stop_scanning()

        self.assertFalse(self.radio.scanning)
        self.assertFalse(self.controller.scanning)
        self.assertEqual(self.radio.events, ["start_scan", "stop_scan"])

    async def test_start_queued_behind_stop_is_skipped(self) -> None:
        self.radio.set_state(POWERED_ON)
        await settle()
        self.radio.start_delay = 0.05

        first = asyncio.create_task(self.controller.start_scanning())
        await asyncio.sleep(0.01)
        second = asyncio.create_task(self.controller.start_scanning())
        await asyncio.sleep(0)
        await self.controller.stop_scanning()
        await asyncio.gather(first, second)

        self.assertFalse(self.radio.scanning)
        self.assertFalse(self.controller.scanning)
        self.assertEqual(len(self.radio.scan_calls), 2)


class FakeBleakScanner:
    instances: List["FakeBleakScanner"] = []
    start_delay = 0.0

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs: Dict[str, Any] = kwargs
        self.started = False
        self.stopped = False
        FakeBleakScanner.instances.append(self)

    @property
    def running(self) -> bool:
        return self.started and not self.stopped

    async def start(self) -> None:
        await asyncio.sleep(self.start_delay)
        self.started = True

    async def stop(self) -> None:
        await asyncio.sleep(0)
        self.stopped = True

    def emit(self, device: Any, advertisement: Any = None) -> None:
        self.kwargs["detection_callback"](device, advertisement)


class BleakRadioTest(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        FakeBleakScanner.instances = []
        FakeBleakScanner.start_delay = 0.0
        patcher = patch("magmon.scanner.BleakScanner", FakeBleakScanner)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def test_open_reports_powered_on(self) -> None:
        radio = BleakRadio()
        states: List[str] = []
        radio.on_state_change(states.append)

        await radio.open()

        self.assertEqual(states, [POWERED_ON])
        self.assertEqual(radio.state, POWERED_ON)

    async def test_start_scan_passes_bleak_options(self) -> None:
        radio = BleakRadio(adapter="hci1")

        await radio.start_scan(None, allow_duplicates=True)

        scanner = FakeBleakScanner.instances[-1]
        self.assertTrue(scanner.started)
        self.assertNotIn("service_uuids", scanner.kwargs)
        self.assertEqual(scanner.kwargs["adapter"], "hci1")
        self.assertEqual(scanner.kwargs["scanning_mode"], "active")
        self.assertEqual(scanner.kwargs["bluez"], {"filters": {"DuplicateData": True}})

        # already scanning: no second scanner
        await radio.start_scan()
        self.assertEqual(len(FakeBleakScanner.instances), 1)

        await radio.stop_scan()
        self.assertTrue(scanner.stopped)

    async def test_stop_issued_during_start_stops_the_scanner(self) -> None:
        FakeBleakScanner.start_delay = 0.05
        radio = BleakRadio()

        start = asyncio.create_task(radio.start_scan())
        await asyncio.sleep(0.01)
        await radio.stop_scan()
        await start

        self.assertEqual([scanner.running for scanner in FakeBleakScanner.instances], [False])

    async def test_overlapping_starts_create_one_scanner(self) -> None:
        FakeBleakScanner.start_delay = 0.05
        radio = BleakRadio()

        await asyncio.gather(radio.start_scan(), radio.start_scan())
        self.assertEqual(len(FakeBleakScanner.instances), 1)

        await radio.stop_scan()
        self.assertFalse(FakeBleakScanner.instances[0].running)

    async def test_stop_without_scan_is_noop(self) -> None:
        radio = BleakRadio()
        await radio.stop_scan()
        self.assertEqual(FakeBleakScanner.instances, [])

    async def test_detection_yields_connectable_peripherals(self) -> None:
        radio = BleakRadio(connect_timeout=4.0)
        discovered: List[Any] = []
        radio.on_discover(discovered.append)
        await radio.start_scan()

        device = SimpleNamespace(address="AA:BB:CC:DD:EE:FF", name="mag")
        FakeBleakScanner.instances[-1].emit(device, SimpleNamespace(rssi=-60))

        self.assertEqual(len(discovered), 1)
        peripheral = discovered[0]
        self.assertIsInstance(peripheral, BleakPeripheral)
        self.assertEqual(peripheral.address, "AA:BB:CC:DD:EE:FF")
        self.assertEqual(peripheral.timeout, 4.0)
        self.assertIs(peripheral.device, device)


if __name__ == "__main__":
    import unittest

    unittest.main()
