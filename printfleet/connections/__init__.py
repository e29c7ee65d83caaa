from .manager import ConnectionManager, ConnectOutcome, SendOutcome
from .timing import BluetoothTiming, TcpTiming, TransportConfig, UsbTiming

__all__ = [
    "BluetoothTiming",
    "ConnectOutcome",
    "ConnectionManager",
    "SendOutcome",
    "TcpTiming",
    "TransportConfig",
    "UsbTiming",
]
