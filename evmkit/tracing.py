"""Execution tracers: an opcode histogram and a JSON-lines instruction trace."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional, TextIO, Union

from .state import CallResult, ExecutionState, Message, Revision, Status

OpcodeNames = Union[Mapping[int, Optional[str]], Sequence[Optional[str]]]


def _name_table(opcode_names: OpcodeNames | None) -> dict[int, str]:
    if opcode_names is None:
        return {}
    items = opcode_names.items() if isinstance(opcode_names, Mapping) else enumerate(opcode_names)
    return {int(opcode): name for opcode, name in items if name is not None}


def _opcode_name(names: dict[int, str], opcode: int) -> str:
    name = names.get(opcode)
    return name if name is not None else f"0x{opcode:02x}"


def _revision_name(rev: int) -> str:
    return Revision(rev).name.replace("_", " ").title()


def _status_name(status: int) -> str:
    return Status(status).name.replace("_", " ").lower()


class Tracer(ABC):
    """Receives execution events; tracers form a chain via ``next_tracer``."""

    def __init__(self) -> None:
        self.next_tracer: Tracer | None = None

    def _chain(self) -> Iterator[Tracer]:
        tracer: Tracer | None = self
        while tracer is not None:
            yield tracer
            tracer = tracer.next_tracer

    def notify_execution_start(self, rev: Revision, msg: Message, code: bytes) -> None:
        for tracer in self._chain():
            tracer.on_execution_start(rev, msg, code)

    def notify_instruction_start(self, pc: int, state: ExecutionState) -> None:
        for tracer in self._chain():
            tracer.on_instruction_start(pc, state)

    def notify_execution_end(self, result: CallResult) -> None:
        for tracer in self._chain():
            tracer.on_execution_end(result)

    @abstractmethod
    def on_execution_start(self, rev: Revision, msg: Message, code: bytes) -> None:
        """Handle the start of executing ``code`` for ``msg``."""

    @abstractmethod
    def on_instruction_start(self, pc: int, state: ExecutionState) -> None:
        """Handle the instruction at ``pc`` about to run."""

    @abstractmethod
    def on_execution_end(self, result: CallResult) -> None:
        """Handle the end of the innermost running execution."""


@dataclass
class _HistogramContext:
    depth: int
    code: bytes
    counts: Counter = field(default_factory=Counter)


class HistogramTracer(Tracer):
    """Counts executed opcodes and reports them as CSV when an execution ends."""

    def __init__(self, out: TextIO, opcode_names: OpcodeNames | None = None) -> None:
        super().__init__()
        self._out = out
        self._names = _name_table(opcode_names)
        self._contexts: list[_HistogramContext] = []

    def on_execution_start(self, rev: Revision, msg: Message, code: bytes) -> None:
        self._contexts.append(_HistogramContext(msg.depth, bytes(code)))

    def on_instruction_start(self, pc: int, state: ExecutionState) -> None:
        ctx = self._contexts[-1]
        ctx.counts[ctx.code[pc]] += 1

    def on_execution_end(self, result: CallResult) -> None:
        ctx = self._contexts.pop()
        lines = [f"--- # HISTOGRAM depth={ctx.depth}", "opcode,count"]
        lines.extend(
            f"{_opcode_name(self._names, opcode)},{count}"
            for opcode, count in sorted(ctx.counts.items())
        )
        self._out.write("\n".join(lines) + "\n")


@dataclass(frozen=True)
class _InstructionContext:
    code: bytes
    start_gas: int


class InstructionTracer(Tracer):
    """Writes one JSON object per line for each execution start, instruction and end."""

    def __init__(self, out: TextIO, opcode_names: OpcodeNames | None = None) -> None:
        super().__init__()
        self._out = out
        self._names = _name_table(opcode_names)
        self._contexts: list[_InstructionContext] = []

    def on_execution_start(self, rev: Revision, msg: Message, code: bytes) -> None:
        self._contexts.append(_InstructionContext(bytes(code), msg.gas))
        static = "true" if msg.is_static else "false"
        self._out.write(
            f'{{"depth":{msg.depth},"rev":"{_revision_name(rev)}","static":{static}}}\n'
        )

    def on_instruction_start(self, pc: int, state: ExecutionState) -> None:
        opcode = self._contexts[-1].code[pc]
        stack = ",".join(f'"0x{item:x}"' for item in reversed(list(state.stack)))
        self._out.write(
            f'{{"pc":{pc},"op":{opcode},"opName":"{_opcode_name(self._names, opcode)}"'
            f',"gas":{state.gas_left},"stack":[{stack}],"memorySize":{len(state.memory)}}}\n'
        )

    def on_execution_end(self, result: CallResult) -> None:
        ctx = self._contexts.pop()
        if result.status == Status.SUCCESS:
            error = "null"
        else:
            error = f'"{_status_name(result.status)}"'
        self._out.write(
            f'{{"error":{error},"gas":{result.gas_left}'
            f',"gasUsed":{ctx.start_gas - result.gas_left}'
            f',"output":"{bytes(result.output_data).hex()}"}}\n'
        )


def create_histogram_tracer(out: TextIO, opcode_names: OpcodeNames | None = None) -> Tracer:
    """Create a tracer reporting opcode counts as CSV to ``out``."""
    return HistogramTracer(out, opcode_names)


def create_instruction_tracer(out: TextIO, opcode_names: OpcodeNames | None = None) -> Tracer:
    """Create a tracer writing a JSON-lines instruction trace to ``out``."""
    return InstructionTracer(out, opcode_names)