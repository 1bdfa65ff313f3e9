from __future__ import annotations


class BridgeError(Exception):
    """Base for recoverable errors: the triggering event is logged and dropped."""


class MalformedInput(BridgeError):
    pass


class UnknownDevice(BridgeError):
    pass


class CapabilityRejected(BridgeError):
    pass


class UnsupportedCommand(BridgeError):
    pass
