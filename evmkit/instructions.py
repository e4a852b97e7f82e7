"""Implementations of individual EVM instructions.

Each instruction works on an :class:`~evmkit.state.ExecutionState`. The base
cost of an instruction and its stack requirements are checked by the
interpreter before it runs; an instruction charges only its additional,
dynamic costs. Failures are raised as :class:`~evmkit.state.ExecutionError`.
"""

from __future__ import annotations

from Crypto.Hash import keccak

from .state import (
    MAX_BUFFER_SIZE,
    UINT256_MASK,
    ZERO_BYTES32,
    AccessStatus,
    ExecutionError,
    ExecutionState,
    Revision,
    Status,
    StorageStatus,
    check_memory,
    num_words,
)

COLD_SLOAD_COST = 2100
COLD_ACCOUNT_ACCESS_COST = 2600
WARM_STORAGE_READ_COST = 100
ADDITIONAL_COLD_ACCOUNT_ACCESS_COST = COLD_ACCOUNT_ACCESS_COST - WARM_STORAGE_READ_COST

_SIGN_BIT = 1 << 255
_ADDRESS_MASK = (1 << 160) - 1
_UINT64_MASK = (1 << 64) - 1


def _load(data: bytes) -> int:
    return int.from_bytes(data, "big")


def _to_bytes32(value: int) -> bytes:
    return (value & UINT256_MASK).to_bytes(32, "big")


def _to_address(value: int) -> bytes:
    return (value & _ADDRESS_MASK).to_bytes(20, "big")


def _to_signed(value: int) -> int:
    return value - (1 << 256) if value & _SIGN_BIT else value


def _charge_cold_account(state: ExecutionState, addr: bytes, cost: int) -> None:
    if state.rev >= Revision.BERLIN and state.host.access_account(addr) == AccessStatus.COLD:
        state.charge(cost)


def _write_memory(state: ExecutionState, offset: int, data: bytes, size: int) -> None:
    """Write ``data`` at ``offset`` and zero-fill up to ``size`` bytes."""
    if size:
        state.memory[offset : offset + size] = bytes(data).ljust(size, b"\x00")


def _reject_static(state: ExecutionState) -> None:
    if state.msg.is_static:
        raise ExecutionError(Status.STATIC_MODE_VIOLATION)


# Arithmetic


def add(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack.set_top(state.stack.top() + x)


def mul(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack.set_top(state.stack.top() * x)


def sub(state: ExecutionState) -> None:
    state.stack[1] = state.stack[0] - state.stack[1]
    state.stack.pop()


def div(state: ExecutionState) -> None:
    v = state.stack[1]
    state.stack[1] = state.stack[0] // v if v != 0 else 0
    state.stack.pop()


def sdiv(state: ExecutionState) -> None:
    v = state.stack[1]
    if v == 0:
        state.stack[1] = 0
    else:
        a, b = _to_signed(state.stack[0]), _to_signed(v)
        quotient = abs(a) // abs(b)
        state.stack[1] = -quotient if (a < 0) != (b < 0) else quotient
    state.stack.pop()


def mod(state: ExecutionState) -> None:
    v = state.stack[1]
    state.stack[1] = state.stack[0] % v if v != 0 else 0
    state.stack.pop()


def smod(state: ExecutionState) -> None:
    v = state.stack[1]
    if v == 0:
        state.stack[1] = 0
    else:
        a, b = _to_signed(state.stack[0]), _to_signed(v)
        remainder = abs(a) % abs(b)
        state.stack[1] = -remainder if a < 0 else remainder
    state.stack.pop()


def addmod(state: ExecutionState) -> None:
    x = state.stack.pop()
    y = state.stack.pop()
    m = state.stack.top()
    state.stack.set_top((x + y) % m if m != 0 else 0)


def mulmod(state: ExecutionState) -> None:
    x = state.stack.pop()
    y = state.stack.pop()
    m = state.stack.top()
    state.stack.set_top((x * y) % m if m != 0 else 0)


def exp(state: ExecutionState) -> None:
    base = state.stack.pop()
    exponent = state.stack.top()
    significant_bytes = (exponent.bit_length() + 7) // 8
    byte_cost = 50 if state.rev >= Revision.SPURIOUS_DRAGON else 10
    state.charge(significant_bytes * byte_cost)
    state.stack.set_top(pow(base, exponent, 1 << 256))


def signextend(state: ExecutionState) -> None:
    ext = state.stack.pop()
    x = state.stack.top()
    if ext < 31:
        sign_mask = 1 << (ext * 8 + 7)
        value_mask = sign_mask - 1
        if x & sign_mask:
            state.stack.set_top(x | (UINT256_MASK ^ value_mask))
        else:
            state.stack.set_top(x & value_mask)


# Comparison and bitwise logic


def lt(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack[0] = int(x < state.stack[0])


def gt(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack[0] = int(state.stack[0] < x)


def slt(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack[0] = int(_to_signed(x) < _to_signed(state.stack[0]))


def sgt(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack[0] = int(_to_signed(state.stack[0]) < _to_signed(x))


def eq(state: ExecutionState) -> None:
    state.stack[1] = int(state.stack[0] == state.stack[1])
    state.stack.pop()


def iszero(state: ExecutionState) -> None:
    state.stack.set_top(int(state.stack.top() == 0))


def and_(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack.set_top(state.stack.top() & x)


def or_(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack.set_top(state.stack.top() | x)


def xor_(state: ExecutionState) -> None:
    x = state.stack.pop()
    state.stack.set_top(state.stack.top() ^ x)


def not_(state: ExecutionState) -> None:
    state.stack.set_top(UINT256_MASK ^ state.stack.top())


def byte(state: ExecutionState) -> None:
    n = state.stack.pop()
    x = state.stack.top()
    state.stack.set_top(0 if n > 31 else (x >> ((31 - n) * 8)) & 0xFF)


def shl(state: ExecutionState) -> None:
    shift = state.stack.pop()
    state.stack.set_top(state.stack.top() << shift if shift < 256 else 0)


def shr(state: ExecutionState) -> None:
    shift = state.stack.pop()
    state.stack.set_top(state.stack.top() >> shift if shift < 256 else 0)


def sar(state: ExecutionState) -> None:
    if not state.stack[1] & _SIGN_BIT:
        shr(state)
        return
    shift = state.stack[0]
    if shift >= 256:
        state.stack[1] = UINT256_MASK
    else:
        state.stack[1] = (state.stack[1] >> shift) | (UINT256_MASK << (256 - shift))
    state.stack.pop()


def keccak256(state: ExecutionState) -> None:
    index = state.stack.pop()
    size = state.stack.top()
    check_memory(state, index, size)
    state.charge(num_words(size) * 6)
    data = bytes(state.memory[index : index + size]) if size else b""
    state.stack.set_top(_load(keccak.new(digest_bits=256, data=data).digest()))


# Environment


def address(state: ExecutionState) -> None:
    state.stack.push(_load(state.msg.destination))


def balance(state: ExecutionState) -> None:
    addr = _to_address(state.stack.top())
    _charge_cold_account(state, addr, ADDITIONAL_COLD_ACCOUNT_ACCESS_COST)
    state.stack.set_top(state.host.get_balance(addr))


def origin(state: ExecutionState) -> None:
    state.stack.push(_load(state.host.get_tx_context().tx_origin))


def caller(state: ExecutionState) -> None:
    state.stack.push(_load(state.msg.sender))


def callvalue(state: ExecutionState) -> None:
    state.stack.push(state.msg.value)


def calldataload(state: ExecutionState) -> None:
    index = state.stack.top()
    data = state.msg.input_data
    if len(data) < index:
        state.stack.set_top(0)
    else:
        state.stack.set_top(_load(data[index : index + 32].ljust(32, b"\x00")))


def calldatasize(state: ExecutionState) -> None:
    state.stack.push(len(state.msg.input_data))


def _copy_from(state: ExecutionState, source: bytes) -> None:
    mem_index = state.stack.pop()
    input_index = state.stack.pop()
    size = state.stack.pop()
    check_memory(state, mem_index, size)
    src = min(len(source), input_index)
    state.charge(num_words(size) * 3)
    _write_memory(state, mem_index, source[src : src + size], size)


def calldatacopy(state: ExecutionState) -> None:
    _copy_from(state, state.msg.input_data)


def codesize(state: ExecutionState) -> None:
    state.stack.push(len(state.code))


def codecopy(state: ExecutionState) -> None:
    _copy_from(state, state.code)


def gasprice(state: ExecutionState) -> None:
    state.stack.push(state.host.get_tx_context().tx_gas_price)


def basefee(state: ExecutionState) -> None:
    state.stack.push(state.host.get_tx_context().block_base_fee)


def extcodesize(state: ExecutionState) -> None:
    addr = _to_address(state.stack.top())
    _charge_cold_account(state, addr, ADDITIONAL_COLD_ACCOUNT_ACCESS_COST)
    state.stack.set_top(state.host.get_code_size(addr))


def extcodecopy(state: ExecutionState) -> None:
    addr = _to_address(state.stack.pop())
    mem_index = state.stack.pop()
    input_index = state.stack.pop()
    size = state.stack.pop()
    check_memory(state, mem_index, size)
    src = min(MAX_BUFFER_SIZE, input_index)
    state.charge(num_words(size) * 3)
    _charge_cold_account(state, addr, ADDITIONAL_COLD_ACCOUNT_ACCESS_COST)
    data = state.host.copy_code(addr, src, size)
    _write_memory(state, mem_index, data, size)


def returndatasize(state: ExecutionState) -> None:
    state.stack.push(len(state.return_data))


def returndatacopy(state: ExecutionState) -> None:
    mem_index = state.stack.pop()
    input_index = state.stack.pop()
    size = state.stack.pop()
    check_memory(state, mem_index, size)
    available = len(state.return_data)
    if available < input_index or input_index + size > available:
        raise ExecutionError(Status.INVALID_MEMORY_ACCESS)
    state.charge(num_words(size) * 3)
    _write_memory(state, mem_index, state.return_data[input_index : input_index + size], size)


def extcodehash(state: ExecutionState) -> None:
    addr = _to_address(state.stack.top())
    _charge_cold_account(state, addr, ADDITIONAL_COLD_ACCOUNT_ACCESS_COST)
    state.stack.set_top(_load(state.host.get_code_hash(addr)))


# Block information


def blockhash(state: ExecutionState) -> None:
    number = state.stack.top()
    upper_bound = state.host.get_tx_context().block_number
    lower_bound = max(upper_bound - 256, 0)
    if lower_bound <= number < upper_bound:
        header = state.host.get_block_hash(number)
    else:
        header = ZERO_BYTES32
    state.stack.set_top(_load(header))


def coinbase(state: ExecutionState) -> None:
    state.stack.push(_load(state.host.get_tx_context().block_coinbase))


def timestamp(state: ExecutionState) -> None:
    state.stack.push(state.host.get_tx_context().block_timestamp & _UINT64_MASK)


def number(state: ExecutionState) -> None:
    state.stack.push(state.host.get_tx_context().block_number & _UINT64_MASK)


def difficulty(state: ExecutionState) -> None:
    state.stack.push(state.host.get_tx_context().block_difficulty)


def gaslimit(state: ExecutionState) -> None:
    state.stack.push(state.host.get_tx_context().block_gas_limit & _UINT64_MASK)


def chainid(state: ExecutionState) -> None:
    state.stack.push(state.host.get_tx_context().chain_id)


def selfbalance(state: ExecutionState) -> None:
    state.stack.push(state.host.get_balance(state.msg.destination))


# Stack, memory and storage


def pop(state: ExecutionState) -> None:
    state.stack.pop()


def mload(state: ExecutionState) -> None:
    index = state.stack.top()
    check_memory(state, index, 32)
    state.stack.set_top(_load(state.memory[index : index + 32]))


def mstore(state: ExecutionState) -> None:
    index = state.stack.pop()
    value = state.stack.pop()
    check_memory(state, index, 32)
    state.memory[index : index + 32] = _to_bytes32(value)


def mstore8(state: ExecutionState) -> None:
    index = state.stack.pop()
    value = state.stack.pop()
    check_memory(state, index, 1)
    state.memory[index] = value & 0xFF


def sload(state: ExecutionState) -> None:
    key = _to_bytes32(state.stack.top())
    destination = state.msg.destination
    if (
        state.rev >= Revision.BERLIN
        and state.host.access_storage(destination, key) == AccessStatus.COLD
    ):
        # The warm read cost is part of the base cost; only the difference is added here.
        state.charge(COLD_SLOAD_COST - WARM_STORAGE_READ_COST)
    state.stack.set_top(_load(state.host.get_storage(destination, key)))


def sstore(state: ExecutionState) -> None:
    _reject_static(state)
    if state.rev >= Revision.ISTANBUL and state.gas_left <= 2300:
        raise ExecutionError(Status.OUT_OF_GAS)

    key = _to_bytes32(state.stack.pop())
    value = _to_bytes32(state.stack.pop())
    destination = state.msg.destination

    cost = 0
    if (
        state.rev >= Revision.BERLIN
        and state.host.access_storage(destination, key) == AccessStatus.COLD
    ):
        cost = COLD_SLOAD_COST

    status = state.host.set_storage(destination, key, value)
    if status in (StorageStatus.UNCHANGED, StorageStatus.MODIFIED_AGAIN):
        if state.rev >= Revision.BERLIN:
            cost += WARM_STORAGE_READ_COST
        elif state.rev == Revision.ISTANBUL:
            cost = 800
        elif state.rev == Revision.CONSTANTINOPLE:
            cost = 200
        else:
            cost = 5000
    elif status in (StorageStatus.MODIFIED, StorageStatus.DELETED):
        if state.rev >= Revision.BERLIN:
            cost += 5000 - COLD_SLOAD_COST
        else:
            cost = 5000
    elif status == StorageStatus.ADDED:
        cost += 20000
    state.charge(cost)


def msize(state: ExecutionState) -> None:
    state.stack.push(len(state.memory))


def gas(state: ExecutionState) -> None:
    state.stack.push(state.gas_left)


def dup(state: ExecutionState, n: int) -> None:
    """DUPn: push a copy of the n-th stack item (1-based)."""
    if not 1 <= n <= 16:
        raise ValueError(f"DUP index must be in 1..16, got {n}")
    state.stack.push(state.stack[n - 1])


def swap(state: ExecutionState, n: int) -> None:
    """SWAPn: exchange the top item with the (n+1)-th one."""
    if not 1 <= n <= 16:
        raise ValueError(f"SWAP index must be in 1..16, got {n}")
    other = state.stack[n]
    state.stack[n] = state.stack[0]
    state.stack[0] = other


def log(state: ExecutionState, num_topics: int) -> None:
    """LOGn: emit a log record with ``num_topics`` topics."""
    if not 0 <= num_topics <= 4:
        raise ValueError(f"number of log topics must be in 0..4, got {num_topics}")
    _reject_static(state)

    offset = state.stack.pop()
    size = state.stack.pop()
    check_memory(state, offset, size)
    state.charge(size * 8)

    topics = tuple(_to_bytes32(state.stack.pop()) for _ in range(num_topics))
    data = bytes(state.memory[offset : offset + size]) if size else b""
    state.host.emit_log(state.msg.destination, data, topics)


def return_(state: ExecutionState, status: Status) -> None:
    """RETURN or REVERT: set the output region and the final status."""
    offset = state.stack[0]
    size = state.stack[1]
    try:
        check_memory(state, offset, size)
    except ExecutionError as error:
        state.status = error.status
        return
    state.output_offset = offset
    state.output_size = size
    state.status = status


def selfdestruct(state: ExecutionState) -> None:
    _reject_static(state)
    beneficiary = _to_address(state.stack[0])
    _charge_cold_account(state, beneficiary, COLD_ACCOUNT_ACCESS_COST)

    if state.rev >= Revision.TANGERINE_WHISTLE:
        if state.rev == Revision.TANGERINE_WHISTLE or state.host.get_balance(
            state.msg.destination
        ):
            if not state.host.account_exists(beneficiary):
                state.charge(25000)

    state.host.selfdestruct(state.msg.destination, beneficiary)