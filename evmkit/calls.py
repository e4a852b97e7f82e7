"""Message-call and contract-creation instructions."""

from __future__ import annotations

from .instructions import ADDITIONAL_COLD_ACCOUNT_ACCESS_COST
from .state import (
    UINT256_MASK,
    AccessStatus,
    CallKind,
    ExecutionError,
    ExecutionState,
    Message,
    Revision,
    Status,
    check_memory,
    num_words,
)

CALL_DEPTH_LIMIT = 1024
CALL_VALUE_COST = 9000
NEW_ACCOUNT_COST = 25000
CALL_STIPEND = 2300

_INT64_MAX = 2**63 - 1
_ADDRESS_MASK = (1 << 160) - 1


def _to_address(value: int) -> bytes:
    return (value & _ADDRESS_MASK).to_bytes(20, "big")


def _memory_slice(state: ExecutionState, offset: int, size: int) -> bytes:
    return bytes(state.memory[offset : offset + size]) if size else b""


def call(state: ExecutionState, kind: CallKind, is_static: bool = False) -> None:
    """CALL, CALLCODE, DELEGATECALL or STATICCALL (``is_static`` with CALL)."""
    gas = state.stack.pop()
    dst = _to_address(state.stack.pop())
    value = 0 if (is_static or kind == CallKind.DELEGATECALL) else state.stack.pop()
    has_value = value != 0
    input_offset = state.stack.pop()
    input_size = state.stack.pop()
    output_offset = state.stack.pop()
    output_size = state.stack.pop()

    state.stack.push(0)  # Assume failure.

    if state.rev >= Revision.BERLIN and state.host.access_account(dst) == AccessStatus.COLD:
        state.charge(ADDITIONAL_COLD_ACCOUNT_ACCESS_COST)

    check_memory(state, input_offset, input_size)
    check_memory(state, output_offset, output_size)

    delegated = kind == CallKind.DELEGATECALL
    msg = Message(
        kind=kind,
        is_static=is_static or state.msg.is_static,
        depth=state.msg.depth + 1,
        destination=dst,
        sender=state.msg.sender if delegated else state.msg.destination,
        value=state.msg.value if delegated else value,
        input_data=_memory_slice(state, input_offset, input_size),
    )

    cost = CALL_VALUE_COST if has_value else 0
    if kind == CallKind.CALL:
        if has_value and state.msg.is_static:
            raise ExecutionError(Status.STATIC_MODE_VIOLATION)
        if (has_value or state.rev < Revision.SPURIOUS_DRAGON) and not state.host.account_exists(
            dst
        ):
            cost += NEW_ACCOUNT_COST
    state.charge(cost)

    msg.gas = min(gas, _INT64_MAX)
    if state.rev >= Revision.TANGERINE_WHISTLE:
        msg.gas = min(msg.gas, state.gas_left - state.gas_left // 64)
    elif msg.gas > state.gas_left:
        raise ExecutionError(Status.OUT_OF_GAS)

    if has_value:
        msg.gas += CALL_STIPEND
        state.gas_left += CALL_STIPEND

    state.return_data = b""

    if state.msg.depth >= CALL_DEPTH_LIMIT:
        return
    if has_value and state.host.get_balance(state.msg.destination) < value:
        return

    result = state.host.call(msg)
    state.return_data = bytes(result.output_data)
    state.stack.set_top(int(result.status == Status.SUCCESS))

    copy_size = min(output_size, len(result.output_data))
    if copy_size > 0:
        state.memory[output_offset : output_offset + copy_size] = result.output_data[:copy_size]

    state.gas_left -= msg.gas - result.gas_left


def create(state: ExecutionState, kind: CallKind) -> None:
    """CREATE or CREATE2."""
    if state.msg.is_static:
        raise ExecutionError(Status.STATIC_MODE_VIOLATION)

    endowment = state.stack.pop()
    init_code_offset = state.stack.pop()
    init_code_size = state.stack.pop()

    check_memory(state, init_code_offset, init_code_size)

    salt = 0
    if kind == CallKind.CREATE2:
        salt = state.stack.pop()
        state.charge(num_words(init_code_size) * 6)

    state.stack.push(0)
    state.return_data = b""

    if state.msg.depth >= CALL_DEPTH_LIMIT:
        return
    if endowment != 0 and state.host.get_balance(state.msg.destination) < endowment:
        return

    msg_gas = state.gas_left
    if state.rev >= Revision.TANGERINE_WHISTLE:
        msg_gas -= msg_gas // 64

    msg = Message(
        kind=kind,
        gas=msg_gas,
        input_data=_memory_slice(state, init_code_offset, init_code_size),
        sender=state.msg.destination,
        depth=state.msg.depth + 1,
        create2_salt=(salt & UINT256_MASK).to_bytes(32, "big"),
        value=endowment,
    )

    result = state.host.call(msg)
    state.gas_left -= msg.gas - result.gas_left

    state.return_data = bytes(result.output_data)
    if result.status == Status.SUCCESS:
        state.stack.set_top(int.from_bytes(result.create_address, "big"))