"""
Protocol Drivers
================

BaseProtocolClient and EventDrivenClient implement every lifecycle, locking,
timeout and diagnostics rule once; concrete drivers supply the wire hooks.

Drivers:
    - VirtualChannel: In-memory hybrid device (simulation, commissioning, tests)

Usage:
    from scada_protocols.drivers import VirtualChannel

    channel = VirtualChannel()
    channel.add_telemetry(1, 230.5)
    await channel.connect()
    response = await channel.read(ReadRequest.telemetry())
"""

from scada_protocols.drivers.base import BaseProtocolClient, EventDrivenClient, DriverConfig
from scada_protocols.drivers.virtual import VirtualChannel

__all__ = [
    'BaseProtocolClient',
    'EventDrivenClient',
    'DriverConfig',
    'VirtualChannel',
]
