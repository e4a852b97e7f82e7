"""Execution state, host interface and memory accounting of the EVM interpreter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator

from Crypto.Hash import keccak

MAX_BUFFER_SIZE = 2**32 - 1
"""Largest memory offset or size an instruction may address."""

WORD_SIZE = 32
"""The size of the EVM 256-bit word in bytes."""

STACK_LIMIT = 1024
"""Maximum number of items on the EVM stack."""

UINT256_MASK = (1 << 256) - 1

ZERO_ADDRESS = bytes(20)
ZERO_BYTES32 = bytes(32)


class Revision(IntEnum):
    """Ethereum protocol revisions, in chronological order."""

    FRONTIER = 0
    HOMESTEAD = 1
    TANGERINE_WHISTLE = 2
    SPURIOUS_DRAGON = 3
    BYZANTIUM = 4
    CONSTANTINOPLE = 5
    PETERSBURG = 6
    ISTANBUL = 7
    BERLIN = 8
    LONDON = 9


class Status(IntEnum):
    """Outcome of an execution."""

    SUCCESS = 0
    FAILURE = 1
    REVERT = 2
    OUT_OF_GAS = 3
    INVALID_INSTRUCTION = 4
    UNDEFINED_INSTRUCTION = 5
    STACK_OVERFLOW = 6
    STACK_UNDERFLOW = 7
    BAD_JUMP_DESTINATION = 8
    INVALID_MEMORY_ACCESS = 9
    CALL_DEPTH_EXCEEDED = 10
    STATIC_MODE_VIOLATION = 11
    PRECOMPILE_FAILURE = 12
    CONTRACT_VALIDATION_FAILURE = 13
    ARGUMENT_OUT_OF_RANGE = 14


class CallKind(IntEnum):
    """Kind of a message call."""

    CALL = 0
    DELEGATECALL = 1
    CALLCODE = 2
    CREATE = 3
    CREATE2 = 4


class StorageStatus(IntEnum):
    """Effect of a storage write, as reported by the host."""

    UNCHANGED = 0
    MODIFIED = 1
    MODIFIED_AGAIN = 2
    ADDED = 3
    DELETED = 4


class AccessStatus(IntEnum):
    """Whether an account or storage slot was already accessed (EIP-2929)."""

    COLD = 0
    WARM = 1


class ExecutionError(Exception):
    """Raised by an instruction that ends execution with a failure status."""

    def __init__(self, status: Status, message: str | None = None) -> None:
        super().__init__(message or status.name)
        self.status = status


@dataclass
class TxContext:
    """Transaction and block information provided by the host."""

    tx_gas_price: int = 0
    tx_origin: bytes = ZERO_ADDRESS
    block_coinbase: bytes = ZERO_ADDRESS
    block_number: int = 0
    block_timestamp: int = 0
    block_gas_limit: int = 0
    block_difficulty: int = 0
    chain_id: int = 0
    block_base_fee: int = 0


@dataclass
class Message:
    """A message call or contract creation request."""

    kind: CallKind = CallKind.CALL
    is_static: bool = False
    depth: int = 0
    gas: int = 0
    destination: bytes = ZERO_ADDRESS
    sender: bytes = ZERO_ADDRESS
    input_data: bytes = b""
    value: int = 0
    create2_salt: bytes = ZERO_BYTES32


@dataclass
class CallResult:
    """Result of a message call or of an execution."""

    status: Status = Status.SUCCESS
    gas_left: int = 0
    output_data: bytes = b""
    create_address: bytes = ZERO_ADDRESS


def _keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


@dataclass
class Host:
    """In-memory world state that an execution talks to.

    Accounts exist when they have a balance or code entry. Every access and
    side effect is recorded so that callers can inspect what happened.
    """

    tx_context: TxContext = field(default_factory=TxContext)
    balances: dict[bytes, int] = field(default_factory=dict)
    codes: dict[bytes, bytes] = field(default_factory=dict)
    storage: dict[tuple[bytes, bytes], bytes] = field(default_factory=dict)
    block_hashes: dict[int, bytes] = field(default_factory=dict)
    call_result: CallResult = field(default_factory=CallResult)
    recorded_calls: list[Message] = field(default_factory=list)
    recorded_logs: list[tuple[bytes, bytes, tuple[bytes, ...]]] = field(default_factory=list)
    recorded_selfdestructs: list[tuple[bytes, bytes]] = field(default_factory=list)
    recorded_account_accesses: list[bytes] = field(default_factory=list)
    _dirty_slots: set[tuple[bytes, bytes]] = field(default_factory=set, repr=False)
    _warm_slots: set[tuple[bytes, bytes]] = field(default_factory=set, repr=False)

    def get_tx_context(self) -> TxContext:
        return self.tx_context

    def account_exists(self, addr: bytes) -> bool:
        self.recorded_account_accesses.append(addr)
        return addr in self.balances or addr in self.codes

    def get_balance(self, addr: bytes) -> int:
        self.recorded_account_accesses.append(addr)
        return self.balances.get(addr, 0)

    def get_code_size(self, addr: bytes) -> int:
        self.recorded_account_accesses.append(addr)
        return len(self.codes.get(addr, b""))

    def get_code_hash(self, addr: bytes) -> bytes:
        self.recorded_account_accesses.append(addr)
        if addr not in self.balances and addr not in self.codes:
            return ZERO_BYTES32
        return _keccak256(self.codes.get(addr, b""))

    def copy_code(self, addr: bytes, offset: int, size: int) -> bytes:
        """Return at most ``size`` bytes of the account's code from ``offset``."""
        self.recorded_account_accesses.append(addr)
        return self.codes.get(addr, b"")[offset : offset + size]

    def get_storage(self, addr: bytes, key: bytes) -> bytes:
        self.recorded_account_accesses.append(addr)
        return self.storage.get((addr, key), ZERO_BYTES32)

    def set_storage(self, addr: bytes, key: bytes, value: bytes) -> StorageStatus:
        self.recorded_account_accesses.append(addr)
        slot = (addr, key)
        current = self.storage.get(slot, ZERO_BYTES32)
        if current == value:
            return StorageStatus.UNCHANGED
        if slot in self._dirty_slots:
            status = StorageStatus.MODIFIED_AGAIN
        else:
            self._dirty_slots.add(slot)
            if not any(current):
                status = StorageStatus.ADDED
            elif any(value):
                status = StorageStatus.MODIFIED
            else:
                status = StorageStatus.DELETED
        self.storage[slot] = value
        return status

    def get_block_hash(self, number: int) -> bytes:
        return self.block_hashes.get(number, ZERO_BYTES32)

    def emit_log(self, addr: bytes, data: bytes, topics: tuple[bytes, ...]) -> None:
        self.recorded_logs.append((addr, bytes(data), tuple(topics)))

    def access_account(self, addr: bytes) -> AccessStatus:
        already_accessed = addr in self.recorded_account_accesses
        self.recorded_account_accesses.append(addr)
        return AccessStatus.WARM if already_accessed else AccessStatus.COLD

    def access_storage(self, addr: bytes, key: bytes) -> AccessStatus:
        slot = (addr, key)
        if slot in self._warm_slots:
            return AccessStatus.WARM
        self._warm_slots.add(slot)
        return AccessStatus.COLD

    def selfdestruct(self, addr: bytes, beneficiary: bytes) -> None:
        self.recorded_account_accesses.append(addr)
        self.recorded_selfdestructs.append((addr, beneficiary))

    def call(self, msg: Message) -> CallResult:
        self.recorded_account_accesses.append(msg.destination)
        self.recorded_calls.append(msg)
        result = self.call_result
        return CallResult(
            status=result.status,
            gas_left=result.gas_left,
            output_data=result.output_data,
            create_address=result.create_address,
        )


class Stack:
    """The EVM stack of 256-bit words; index 0 is the top item."""

    def __init__(self, items: list[int] | None = None) -> None:
        self._items: list[int] = []
        for item in items or ():
            self.push(item)

    def push(self, value: int) -> None:
        if len(self._items) >= STACK_LIMIT:
            raise ExecutionError(Status.STACK_OVERFLOW)
        self._items.append(int(value) & UINT256_MASK)

    def pop(self) -> int:
        if not self._items:
            raise ExecutionError(Status.STACK_UNDERFLOW)
        return self._items.pop()

    def top(self) -> int:
        return self[0]

    def set_top(self, value: int) -> None:
        self[0] = value

    def _position(self, index: int) -> int:
        if not 0 <= index < len(self._items):
            raise ExecutionError(Status.STACK_UNDERFLOW)
        return len(self._items) - 1 - index

    def __getitem__(self, index: int) -> int:
        return self._items[self._position(index)]

    def __setitem__(self, index: int, value: int) -> None:
        self._items[self._position(index)] = int(value) & UINT256_MASK

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[int]:
        """Iterate from the top item down to the bottom one."""
        return reversed(self._items)

    def __repr__(self) -> str:
        return f"Stack({self._items!r})"


@dataclass
class ExecutionState:
    """Everything an instruction reads and changes while code runs."""

    msg: Message
    host: Host
    rev: Revision = Revision.LONDON
    code: bytes = b""
    gas_left: int | None = None
    stack: Stack = field(default_factory=Stack)
    memory: bytearray = field(default_factory=bytearray)
    return_data: bytes = b""
    status: Status = Status.SUCCESS
    output_offset: int = 0
    output_size: int = 0

    def __post_init__(self) -> None:
        if self.gas_left is None:
            self.gas_left = self.msg.gas

    def charge(self, cost: int) -> None:
        """Subtract ``cost`` from the gas left; raise OUT_OF_GAS if it goes negative."""
        self.gas_left -= cost
        if self.gas_left < 0:
            raise ExecutionError(Status.OUT_OF_GAS)


def num_words(size_in_bytes: int) -> int:
    """Number of 32-byte words needed to hold ``size_in_bytes`` bytes."""
    return (size_in_bytes + WORD_SIZE - 1) // WORD_SIZE


def _memory_cost(words: int) -> int:
    return 3 * words + words * words // 512


def check_memory(state: ExecutionState, offset: int, size: int) -> None:
    """Make memory cover ``[offset, offset + size)``, charging for the expansion.

    A zero size never touches memory, whatever the offset. Raises
    ExecutionError(OUT_OF_GAS) when the region is out of range or the
    expansion cannot be paid for.
    """
    if size == 0:
        return
    if size > MAX_BUFFER_SIZE or offset > MAX_BUFFER_SIZE:
        raise ExecutionError(Status.OUT_OF_GAS)

    new_size = offset + size
    current_size = len(state.memory)
    if new_size > current_size:
        new_words = num_words(new_size)
        current_words = current_size // WORD_SIZE
        state.charge(_memory_cost(new_words) - _memory_cost(current_words))
        state.memory.extend(bytes(new_words * WORD_SIZE - current_size))