"""The virtual machine instance: options and tracer chain."""

from __future__ import annotations

import sys
from typing import TextIO

from .tracing import OpcodeNames, Tracer, create_histogram_tracer, create_instruction_tracer


class OptionError(ValueError):
    """Raised when an option name is unknown or its value is not accepted."""

    def __init__(self, name: str, value: str, invalid_name: bool) -> None:
        problem = "unknown option" if invalid_name else "invalid value for option"
        super().__init__(f"{problem} {name!r}: {value!r}")
        self.name = name
        self.value = value
        self.invalid_name = invalid_name


class VM:
    """An EVM instance holding its execution mode and tracers."""

    name = "evmkit"
    capabilities = frozenset({"evm1"})

    def __init__(
        self, opcode_names: OpcodeNames | None = None, trace_out: TextIO | None = None
    ) -> None:
        self.optimization_level = 2
        self.opcode_names = opcode_names
        self.trace_out = trace_out
        self._first_tracer: Tracer | None = None

    @property
    def tracer(self) -> Tracer | None:
        """The first tracer of the chain, or None."""
        return self._first_tracer

    def add_tracer(self, tracer: Tracer) -> None:
        """Append ``tracer`` to the end of the tracer chain."""
        if self._first_tracer is None:
            self._first_tracer = tracer
            return
        last = self._first_tracer
        while last.next_tracer is not None:
            last = last.next_tracer
        last.next_tracer = tracer

    def _output(self) -> TextIO:
        return self.trace_out if self.trace_out is not None else sys.stderr

    def set_option(self, name: str | None, value: str | None = None) -> None:
        """Apply option ``name``: "O" (0 or 2), "trace" or "histogram"."""
        name = name or ""
        value = value or ""
        if name == "O":
            if value not in ("0", "2"):
                raise OptionError(name, value, invalid_name=False)
            self.optimization_level = int(value)
        elif name == "trace":
            self.add_tracer(create_instruction_tracer(self._output(), self.opcode_names))
        elif name == "histogram":
            self.add_tracer(create_histogram_tracer(self._output(), self.opcode_names))
        else:
            raise OptionError(name, value, invalid_name=True)