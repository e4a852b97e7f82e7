"""EVM execution state, instruction semantics, message calls, tracers and VM options."""

__version__ = "0.1.0"

__all__ = ["calls", "instructions", "state", "tracing", "vm"]