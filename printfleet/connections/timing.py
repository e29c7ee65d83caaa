from dataclasses import dataclass, field


@dataclass
class TcpTiming:
    """Network printer timing. All values in seconds."""

    # One entry per attempt: the first connect after idle is often slow
    connect_timeouts: tuple = (8.0, 5.0, 10.0)
    retry_delay: float = 0.2
    settle_delay: float = 0.5
    reopen_delay: float = 0.1
    warmup_attempts: int = 3
    warmup_timeout: float = 0.5
    warmup_total_timeout: float = 3.0
    probe_timeout: float = 1.0

    @classmethod
    def from_dict(cls, config: dict) -> "TcpTiming":
        return cls(
            connect_timeouts=tuple(float(t) for t in config.get("connect_timeouts", (8.0, 5.0, 10.0))),
            retry_delay=config.get("retry_delay_ms", 200) / 1000.0,
            settle_delay=config.get("settle_delay_ms", 500) / 1000.0,
            reopen_delay=config.get("reopen_delay_ms", 100) / 1000.0,
            warmup_attempts=config.get("warmup_attempts", 3),
            warmup_timeout=config.get("warmup_timeout_ms", 500) / 1000.0,
            warmup_total_timeout=config.get("warmup_total_timeout_sec", 3.0),
            probe_timeout=config.get("probe_timeout_sec", 1.0),
        )

    @property
    def max_attempts(self) -> int:
        return len(self.connect_timeouts)


@dataclass
class UsbTiming:
    attempts: int = 3
    ready_timeout: float = 3.0
    poll_interval: float = 0.25
    retry_delay: float = 2.0

    @classmethod
    def from_dict(cls, config: dict) -> "UsbTiming":
        return cls(
            attempts=config.get("attempts", 3),
            ready_timeout=config.get("ready_timeout_sec", 3.0),
            poll_interval=config.get("poll_interval_ms", 250) / 1000.0,
            retry_delay=config.get("retry_delay_ms", 2000) / 1000.0,
        )


@dataclass
class BluetoothTiming:
    connect_timeout: float = 10.0
    channel: int = 1

    @classmethod
    def from_dict(cls, config: dict) -> "BluetoothTiming":
        return cls(
            connect_timeout=config.get("connect_timeout_sec", 10.0),
            channel=config.get("channel", 1),
        )


@dataclass
class TransportConfig:
    """Transport section of the config file."""

    backend: str = "native"
    write_timeout: float = 10.0
    tcp: TcpTiming = field(default_factory=TcpTiming)
    usb: UsbTiming = field(default_factory=UsbTiming)
    bluetooth: BluetoothTiming = field(default_factory=BluetoothTiming)

    @classmethod
    def from_dict(cls, config: dict) -> "TransportConfig":
        """Create from the full config dictionary."""
        transport = config.get("transport", {}) or {}
        return cls(
            backend=transport.get("backend", "native"),
            write_timeout=transport.get("write_timeout_sec", 10.0),
            tcp=TcpTiming.from_dict(transport.get("tcp", {}) or {}),
            usb=UsbTiming.from_dict(transport.get("usb", {}) or {}),
            bluetooth=BluetoothTiming.from_dict(transport.get("bluetooth", {}) or {}),
        )
