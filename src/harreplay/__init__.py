"""
harreplay - launch and supervise a HAR replay server

Starts an external replay server for a recorded HAR capture, waits until it
accepts connections, and guarantees the server process is shut down when the
owning scope ends.
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
