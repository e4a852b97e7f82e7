# evmkit

Building blocks of an Ethereum Virtual Machine in plain Python: the
execution state, the semantics and gas accounting of each EVM instruction,
message calls and contract creation, execution tracers, and a small `VM`
object that holds tracers and options.

## Installation

```
pip install evmkit
```

To run the test suite, install the test extra and run pytest:

```
pip install "evmkit[test]"
pytest
```

## Modules

- `evmkit.state`: the enums `Revision` (Frontier to London), `Status`,
  `CallKind`, `StorageStatus` and `AccessStatus`; the `TxContext`,
  `Message` and `CallResult` dataclasses; `ExecutionError`, which carries a
  `Status`; the in-memory `Host`; the 1024-item `Stack`; and
  `ExecutionState` with `charge(cost)`, which raises `OUT_OF_GAS` when gas
  goes negative. `num_words()` rounds a byte count up to 32-byte words and
  `check_memory()` grows memory to cover a region, charging the expansion
  cost (a zero size never touches memory).
- `evmkit.instructions`: one function per instruction (`add`, `sdiv`,
  `exp`, `signextend`, `sar`, `keccak256`, `calldatacopy`, `extcodecopy`,
  `returndatacopy`, `blockhash`, `sload`, `sstore`, `dup`, `swap`, `log`,
  `return_`, `selfdestruct`, ...). Each takes an `ExecutionState`, changes
  its stack, memory and gas, and charges only the instruction's dynamic
  costs (cold access, memory expansion, copy and exponent costs, SSTORE
  costs per revision). Failures are raised as `ExecutionError`.
- `evmkit.calls`: `call(state, kind, is_static)` for CALL, CALLCODE,
  DELEGATECALL and STATICCALL (CALL with `is_static=True`), and
  `create(state, kind)` for CREATE and CREATE2, with the 63/64 gas rule,
  value stipend, new-account cost, depth limit and balance checks.
- `evmkit.tracing`: the `Tracer` base class, `InstructionTracer` (one JSON
  object per line) and `HistogramTracer` (opcode counts as CSV), and the
  factories `create_instruction_tracer()` and `create_histogram_tracer()`.
- `evmkit.vm`: the `VM` object with a tracer chain and `set_option()`.

## The host

`Host` is an in-memory world state: balances, codes, storage and block
hashes in dictionaries, and a fixed `call_result` returned for every
nested call. It records calls, logs, self-destructs and account accesses
in lists for inspection.

## Using the stack

```python
from evmkit.state import Stack

stack = Stack()
stack.push(7)
stack.push(13)
assert stack.top() == 13
assert stack[1] == 7
assert stack.pop() == 13
assert len(stack) == 1
```

Values are 256-bit words held as Python integers; index 0 is the top.
Pushing past 1024 items raises `ExecutionError(Status.STACK_OVERFLOW)`, and
reading below the bottom raises `STACK_UNDERFLOW`.

## Tracing

Tracers write to any text stream. A notification goes to a tracer and then
along the chain to each tracer added after it:

```python
import io

from evmkit.tracing import create_histogram_tracer, create_instruction_tracer
from evmkit.vm import VM

vm = VM()
out = io.StringIO()
vm.add_tracer(create_instruction_tracer(out, None))
vm.add_tracer(create_histogram_tracer(out, None))
```

The instruction tracer writes a line when an execution starts (depth,
revision, static flag), one per instruction (pc, opcode, name, gas left,
stack top first as hex strings, memory size), and one when it ends (error
or `null`, gas left, gas used, output as hex). The histogram tracer writes
a `--- # HISTOGRAM depth=N` header followed by `opcode,count` lines in
opcode order. Opcode names come from the optional table given to the
tracer; opcodes without a name are shown as `0x` and two hex digits.

## Options

`VM.set_option(name, value)` accepts:

| name        | value      | effect                                    |
|-------------|------------|-------------------------------------------|
| `O`         | `0` or `2` | set `optimization_level`                  |
| `trace`     | any        | add an instruction tracer                 |
| `histogram` | any        | add a histogram tracer                    |

Tracers added this way write to the VM's `trace_out` stream, or to stderr
when none was given. An unknown name or an unsupported value raises
`OptionError`.

## What it does not do

There is no bytecode interpreter loop: nothing decodes code, checks base
instruction costs and stack requirements, validates jump destinations or
dispatches opcodes, and there is no `execute` entry point or command. The
instruction functions, the tracers and the `VM` object are the parts such
a loop would drive. Nested calls are not executed either; `Host.call`
returns its configured `call_result`.