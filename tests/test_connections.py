"""
Tests for the connection manager.

Tests:
- TCP retry ladder and per-job sockets
- Bluetooth/USB sessions
- USB unverified direct send
- Warm-up and probing
- Per-printer serialisation
"""

import asyncio
import errno
import logging

import pytest

from printfleet.connections import ConnectionManager, TcpTiming, TransportConfig, UsbTiming
from printfleet.printers import PrinterAddress, PrinterDevice
from printfleet.printers.errors import ConnectionFault, ErrorCode
from printfleet.printers.mock import MockBackend, MockHandle
from printfleet.transport.base import TransportHandle

TCP_TARGET = "192.168.1.50:9100"
BT_MAC = "DC:0D:30:AA:BB:CC"
USB_DEVICE = "/dev/usb/lp0"


def fast_config(**tcp_changes) -> TransportConfig:
    tcp = dict(retry_delay=0, settle_delay=0, reopen_delay=0, warmup_timeout=0.05)
    tcp.update(tcp_changes)
    return TransportConfig(
        tcp=TcpTiming(**tcp),
        usb=UsbTiming(attempts=3, ready_timeout=0.02, poll_interval=0.005, retry_delay=0),
    )


def tcp_printer(printer_id: str = "kitchen", ip: str = "192.168.1.50") -> PrinterDevice:
    return PrinterDevice(id=printer_id, name=printer_id, address=PrinterAddress.tcp(ip))


def bt_printer(printer_id: str = "labels") -> PrinterDevice:
    return PrinterDevice(id=printer_id, name=printer_id, address=PrinterAddress.bluetooth(BT_MAC))


def usb_printer(printer_id: str = "usb") -> PrinterDevice:
    return PrinterDevice(id=printer_id, name=printer_id, address=PrinterAddress.usb(USB_DEVICE))


@pytest.fixture
def backend():
    return MockBackend()


@pytest.fixture
def manager(backend):
    return ConnectionManager(backend, fast_config())


class CountingHandle(TransportHandle):
    def __init__(self, backend: "CountingBackend", inner: TransportHandle, timeout: float):
        super().__init__(inner.target)
        self._backend = backend
        self._inner = inner
        self._timeout = timeout
        self._open = True

    async def write(self, data: bytes) -> None:
        self._backend.in_flight += 1
        self._backend.max_in_flight = max(self._backend.max_in_flight, self._backend.in_flight)
        try:
            await self._inner.write(data)
        finally:
            self._backend.in_flight -= 1

    async def close(self) -> None:
        if self._open:
            self._open = False
            self._backend.open_handles -= 1
            self._backend.events.append(("close", self._timeout))
        await self._inner.close()


class CountingBackend(MockBackend):
    """Mock backend that records how many writes and sockets overlap."""

    def __init__(self, connect_delay: float = 0.0):
        super().__init__()
        self.connect_delay = connect_delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.open_handles = 0
        self.max_open_handles = 0
        self.events: list[tuple[str, float]] = []

    async def open_tcp(self, host: str, port: int, timeout: float) -> TransportHandle:
        self.events.append(("connect", timeout))
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        inner = await super().open_tcp(host, port, timeout)
        self.open_handles += 1
        self.max_open_handles = max(self.max_open_handles, self.open_handles)
        self.events.append(("open", timeout))
        return CountingHandle(self, inner, timeout)


class TestTcpRetryLadder:
    @pytest.mark.asyncio
    async def test_unreachable_exhausts_three_attempts(self, backend, manager):
        """Unreachable printer: 3 attempts with 8s/5s/10s timeouts, then UNREACHABLE."""
        backend.configure(TCP_TARGET, reachable=False)

        outcome = await manager.send(tcp_printer(), b"data")

        assert outcome.ok is False
        assert outcome.attempts == 3
        assert outcome.retry_count == 2
        assert backend.timeouts_for(TCP_TARGET) == [8.0, 5.0, 10.0]
        assert outcome.error.code == ErrorCode.UNREACHABLE
        assert "Check if printer is on and connected to network" in outcome.error.message
        assert backend.sent[TCP_TARGET] == []

    @pytest.mark.asyncio
    async def test_slow_printer_is_not_responding(self, backend):
        manager = ConnectionManager(backend, fast_config(connect_timeouts=(0.01, 0.01, 0.01)))
        backend.configure(TCP_TARGET, hang_on_connect=True)

        outcome = await manager.send(tcp_printer(), b"data")

        assert outcome.ok is False
        assert outcome.attempts == 3
        assert outcome.error.code == ErrorCode.NOT_RESPONDING

    @pytest.mark.asyncio
    async def test_cold_start_succeeds_on_third_attempt(self, backend, manager, caplog):
        backend.configure(TCP_TARGET, fail_connects=2)

        with caplog.at_level(logging.WARNING):
            outcome = await manager.send(tcp_printer(), b"receipt")

        assert outcome.ok is True
        assert outcome.attempts == 3
        assert outcome.retry_count == 2
        assert backend.sent[TCP_TARGET] == [b"receipt"]
        assert caplog.text.count("[JOB_RETRY]") == 2

    @pytest.mark.asyncio
    async def test_fresh_socket_per_job(self, backend, manager):
        printer = tcp_printer()

        await manager.send(printer, b"one")
        await manager.send(printer, b"two")

        assert len(backend.timeouts_for(TCP_TARGET)) == 2
        assert backend.closed == [TCP_TARGET, TCP_TARGET]
        assert backend.sent[TCP_TARGET] == [b"one", b"two"]
        assert manager.is_connected(printer.id) is False

    @pytest.mark.asyncio
    async def test_write_failure_is_retried(self, backend, manager, caplog):
        backend.configure(TCP_TARGET, write_error=ConnectionResetError(errno.ECONNRESET, "Connection reset by peer"))

        with caplog.at_level(logging.WARNING):
            outcome = await manager.send(tcp_printer(), b"data")

        assert outcome.ok is False
        assert outcome.attempts == 3
        assert outcome.error.code == ErrorCode.UNREACHABLE
        assert backend.timeouts_for(TCP_TARGET) == [8.0, 5.0, 10.0]
        assert backend.closed == [TCP_TARGET] * 3
        assert backend.sent[TCP_TARGET] == []
        assert caplog.text.count("[JOB_RETRY]") == 3

    @pytest.mark.asyncio
    async def test_reset_during_write_recovers_on_next_attempt(self, backend, manager):
        backend.configure(TCP_TARGET, fail_writes=1)

        outcome = await manager.send(tcp_printer(), b"receipt")

        assert outcome.ok is True
        assert outcome.attempts == 2
        assert backend.sent[TCP_TARGET] == [b"receipt"]
        assert backend.closed == [TCP_TARGET, TCP_TARGET]

    @pytest.mark.asyncio
    async def test_leftover_socket_is_closed_before_reconnecting(self, backend, manager):
        printer = tcp_printer()
        leftover = MockHandle(backend, TCP_TARGET)
        manager._tcp_handles[printer.id] = leftover

        outcome = await manager.send(printer, b"receipt")

        assert outcome.ok is True
        assert leftover.closed is True
        assert backend.closed == [TCP_TARGET, TCP_TARGET]
        assert backend.sent[TCP_TARGET] == [b"receipt"]
        assert manager.is_connected(printer.id) is False

    @pytest.mark.asyncio
    async def test_state_tracks_failures(self, backend, manager):
        printer = tcp_printer()
        backend.configure(TCP_TARGET, reachable=False)
        await manager.send(printer, b"x")

        state = manager.state(printer.id)
        assert state.consecutive_failures == 1
        assert state.last_error_code == ErrorCode.UNREACHABLE
        assert state.attempts == 3

        backend.configure(TCP_TARGET, reachable=True)
        await manager.send(printer, b"x")

        state = manager.state(printer.id)
        assert state.consecutive_failures == 0
        assert state.last_error is None
        assert state.last_seen is not None


class TestSessions:
    @pytest.mark.asyncio
    async def test_bluetooth_session_is_reused(self, backend, manager):
        printer = bt_printer()

        first = await manager.send(printer, b"one")
        second = await manager.send(printer, b"two")

        assert first.ok and second.ok
        assert backend.timeouts_for(BT_MAC) == [10.0]
        assert backend.sent[BT_MAC] == [b"one", b"two"]
        assert manager.is_connected(printer.id)

    @pytest.mark.asyncio
    async def test_bluetooth_unreachable_is_not_retried(self, backend, manager):
        backend.configure(BT_MAC, reachable=False)

        outcome = await manager.send(bt_printer(), b"data")

        assert outcome.ok is False
        assert outcome.error.code == ErrorCode.UNREACHABLE
        assert len(backend.timeouts_for(BT_MAC)) == 1

    @pytest.mark.asyncio
    async def test_write_error_drops_session(self, backend, manager):
        printer = bt_printer()
        await manager.send(printer, b"one")

        backend.configure(BT_MAC, write_error=OSError(errno.EIO, "Input/output error"))
        outcome = await manager.send(printer, b"two")
        assert outcome.error.code == ErrorCode.SEND_FAILED
        assert manager.is_connected(printer.id) is False

        backend.configure(BT_MAC, write_error=None)
        outcome = await manager.send(printer, b"three")
        assert outcome.ok
        assert len(backend.timeouts_for(BT_MAC)) == 2

    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, backend, manager):
        printer = bt_printer()

        outcome = await manager.connect(printer)
        assert outcome.ok
        assert manager.state(printer.id).is_connected

        # Already connected: no second connect
        await manager.connect(printer)
        assert len(backend.timeouts_for(BT_MAC)) == 1

        outcome = await manager.disconnect(printer)
        assert outcome.ok
        assert manager.is_connected(printer.id) is False
        assert backend.closed == [BT_MAC]

    @pytest.mark.asyncio
    async def test_network_printers_have_no_manual_connect(self, manager):
        for call in (manager.connect, manager.disconnect):
            outcome = await call(tcp_printer())
            assert outcome.ok is False
            assert isinstance(outcome.error, ConnectionFault)
            assert outcome.error.code == ErrorCode.NOT_SUPPORTED

    @pytest.mark.asyncio
    async def test_usb_connect_requires_ready_device(self, backend, manager):
        backend.configure(USB_DEVICE, usb_ready=False)

        outcome = await manager.connect(usb_printer())

        assert outcome.ok is False
        assert outcome.error.code == ErrorCode.NOT_RESPONDING

    @pytest.mark.asyncio
    async def test_close_all(self, backend, manager):
        await manager.connect(bt_printer())
        await manager.connect(usb_printer())

        await manager.close_all()

        assert sorted(backend.closed) == sorted([BT_MAC, USB_DEVICE])
        assert not manager.is_connected("labels")
        assert not manager.is_connected("usb")

    @pytest.mark.asyncio
    async def test_forget_drops_session_and_state(self, backend, manager):
        printer = bt_printer()
        await manager.send(printer, b"x")

        await manager.forget(printer.id)

        assert manager.is_connected(printer.id) is False
        assert manager.state(printer.id).attempts == 0


class TestUsbDelivery:
    @pytest.mark.asyncio
    async def test_ready_device_is_verified(self, backend, manager):
        outcome = await manager.send(usb_printer(), b"label")

        assert outcome.ok is True
        assert outcome.verified is True
        assert backend.sent[USB_DEVICE] == [b"label"]
        assert manager.is_connected("usb")

    @pytest.mark.asyncio
    async def test_never_ready_falls_back_to_unverified_direct_send(self, backend, manager, caplog):
        backend.configure(USB_DEVICE, usb_ready=False)

        with caplog.at_level(logging.INFO):
            outcome = await manager.send(usb_printer(), b"label")

        assert outcome.ok is True
        assert outcome.verified is False
        assert outcome.attempts == 3
        assert backend.direct_sends[USB_DEVICE] == [b"label"]
        assert backend.sent[USB_DEVICE] == []
        assert manager.is_connected("usb") is False
        assert "USB_DIRECT_SEND" in caplog.text

    @pytest.mark.asyncio
    async def test_direct_send_failure_fails(self, backend, manager):
        backend.configure(
            USB_DEVICE,
            usb_ready=False,
            direct_send_error=OSError(errno.ENODEV, "No such device"),
        )

        outcome = await manager.send(usb_printer(), b"label")

        assert outcome.ok is False
        assert outcome.error.code == ErrorCode.UNREACHABLE


class TestSerialisation:
    @pytest.mark.asyncio
    async def test_same_printer_sends_never_overlap(self):
        backend = CountingBackend()
        backend.configure(TCP_TARGET, write_delay=0.02)
        manager = ConnectionManager(backend, fast_config())
        printer = tcp_printer()

        outcomes = await asyncio.gather(*(manager.send(printer, bytes([i])) for i in range(3)))

        assert all(o.ok for o in outcomes)
        assert backend.max_in_flight == 1
        assert backend.sent[TCP_TARGET] == [b"\x00", b"\x01", b"\x02"]

    @pytest.mark.asyncio
    async def test_different_printers_send_in_parallel(self):
        backend = CountingBackend()
        backend.configure(TCP_TARGET, write_delay=0.02)
        backend.configure("192.168.1.51:9100", write_delay=0.02)
        manager = ConnectionManager(backend, fast_config())

        await asyncio.gather(
            manager.send(tcp_printer("a", "192.168.1.50"), b"a"),
            manager.send(tcp_printer("b", "192.168.1.51"), b"b"),
        )

        assert backend.max_in_flight == 2


class TestWarmUp:
    @pytest.mark.asyncio
    async def test_warm_up_opens_and_closes_network_printers_only(self, backend, manager):
        started = await manager.warm_up([tcp_printer(), bt_printer()])

        assert started is True
        assert backend.timeouts_for(TCP_TARGET) == [0.05]
        assert backend.timeouts_for(BT_MAC) == []
        assert backend.closed == [TCP_TARGET]
        assert manager.warming_up is False

    @pytest.mark.asyncio
    async def test_concurrent_warm_up_is_a_no_op(self, backend, manager):
        backend.configure(TCP_TARGET, hang_on_connect=True)

        first = asyncio.create_task(manager.warm_up([tcp_printer()]))
        await asyncio.sleep(0)
        assert manager.warming_up is True

        second = await manager.warm_up([tcp_printer()])

        assert second is False
        assert await first is True
        assert manager.warming_up is False
        # Only the first run made attempts
        assert len(backend.timeouts_for(TCP_TARGET)) == 3

    @pytest.mark.asyncio
    async def test_warm_up_is_bounded(self, backend):
        manager = ConnectionManager(backend, fast_config(warmup_timeout=1.0, warmup_total_timeout=0.05))
        backend.configure(TCP_TARGET, hang_on_connect=True)

        started = await asyncio.wait_for(manager.warm_up([tcp_printer()]), timeout=1.0)

        assert started is True
        assert manager.warming_up is False

    @pytest.mark.asyncio
    async def test_warm_up_and_send_to_same_printer_do_not_interleave(self):
        backend = CountingBackend(connect_delay=0.02)
        backend.configure(TCP_TARGET, fail_connects=2)
        manager = ConnectionManager(backend, fast_config())
        printer = tcp_printer()

        warming = asyncio.create_task(manager.warm_up([printer]))
        while not backend.events:
            await asyncio.sleep(0)
        outcome = await manager.send(printer, b"receipt")
        assert await warming is True

        assert outcome.ok is True
        assert outcome.attempts == 1
        assert backend.max_open_handles == 1
        # Three slow warm-up connects, the last one answers and is closed
        assert backend.events[:5] == [
            ("connect", 0.05),
            ("connect", 0.05),
            ("connect", 0.05),
            ("open", 0.05),
            ("close", 0.05),
        ]
        assert backend.events[5:] == [("connect", 8.0), ("open", 8.0), ("close", 8.0)]
        assert backend.sent[TCP_TARGET] == [b"receipt"]

    @pytest.mark.asyncio
    async def test_probe(self, backend, manager):
        assert await manager.probe(tcp_printer()) is True
        backend.configure(TCP_TARGET, reachable=False)
        assert await manager.probe(tcp_printer()) is False
        assert await manager.probe(bt_printer()) is False


class TestTransportConfig:
    def test_defaults(self):
        config = TransportConfig.from_dict({})
        assert config.backend == "native"
        assert config.tcp.connect_timeouts == (8.0, 5.0, 10.0)
        assert config.tcp.retry_delay == 0.2
        assert config.tcp.settle_delay == 0.5
        assert config.tcp.reopen_delay == 0.1
        assert config.usb.attempts == 3

    def test_custom_values(self):
        config = TransportConfig.from_dict({
            "transport": {
                "backend": "mock",
                "tcp": {"connect_timeouts": [1, 2], "retry_delay_ms": 50},
                "usb": {"attempts": 5, "poll_interval_ms": 100},
                "bluetooth": {"channel": 2},
            }
        })
        assert config.backend == "mock"
        assert config.tcp.connect_timeouts == (1.0, 2.0)
        assert config.tcp.max_attempts == 2
        assert config.tcp.retry_delay == 0.05
        assert config.usb.attempts == 5
        assert config.usb.poll_interval == 0.1
        assert config.bluetooth.channel == 2
