"""stdio-to-TCP bridge: expose a TCP listener to a parent process over stdin/stdout."""

__version__ = "0.1.0"

from stdio2tcp.bridge import Bridge, BridgeError, run_bridge

__all__ = ["Bridge", "BridgeError", "run_bridge", "__version__"]
