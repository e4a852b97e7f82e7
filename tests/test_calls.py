import pytest

from evmkit.calls import create, call
from evmkit.instructions import ADDITIONAL_COLD_ACCOUNT_ACCESS_COST
from evmkit.state import (
    CallKind,
    CallResult,
    ExecutionError,
    ExecutionState,
    Host,
    Message,
    Revision,
    Stack,
    Status,
)

SELF = bytes([0xAA]) * 20
CALLER = bytes([0xBB]) * 20
DST = bytes([0xCC]) * 20
NEW = bytes([0xDD]) * 20


def make_state(items, *, host=None, rev=Revision.LONDON, gas=100_000, depth=0, is_static=False):
    msg = Message(
        depth=depth, gas=gas, destination=SELF, sender=CALLER, is_static=is_static, value=7
    )
    return ExecutionState(msg=msg, host=host or Host(), rev=rev, stack=Stack(list(items)))


def call_items(gas, value=0, in_off=0, in_size=0, out_off=0, out_size=0, with_value=True):
    items = [out_size, out_off, in_size, in_off]
    if with_value:
        items.append(value)
    return items + [int.from_bytes(DST, "big"), gas]


def test_call_success_writes_output_and_pushes_one():
    host = Host(call_result=CallResult(status=Status.SUCCESS, output_data=b"\xaa\xbb"))
    state = make_state(call_items(1000, out_size=2), host=host)
    call(state, CallKind.CALL)
    assert state.stack.top() == 1
    assert len(state.stack) == 1
    assert state.memory[:2] == b"\xaa\xbb"
    assert state.return_data == b"\xaa\xbb"
    msg = host.recorded_calls[0]
    assert msg.gas == 1000
    assert msg.depth == 1
    assert msg.sender == SELF
    assert msg.destination == DST
    assert msg.kind == CallKind.CALL


def test_call_output_truncated_to_requested_size():
    host = Host(call_result=CallResult(output_data=b"\xaa\xbb"))
    state = make_state(call_items(1000, out_size=1), host=host)
    call(state, CallKind.CALL)
    assert state.memory[0] == 0xAA
    assert state.memory[1] == 0
    assert state.return_data == b"\xaa\xbb"


def test_call_passes_input_from_memory():
    host = Host()
    state = make_state(call_items(1000, in_off=1, in_size=2), host=host)
    state.memory = bytearray(b"\x01\x02\x03" + bytes(29))
    call(state, CallKind.CALL)
    assert host.recorded_calls[0].input_data == b"\x02\x03"


def test_call_failure_pushes_zero_but_keeps_return_data():
    host = Host(call_result=CallResult(status=Status.REVERT, output_data=b"no"))
    state = make_state(call_items(1000), host=host)
    call(state, CallKind.CALL)
    assert state.stack.top() == 0
    assert state.return_data == b"no"


def test_call_gas_capped_to_all_but_one_64th():
    host = Host(call_result=CallResult(gas_left=0))
    state = make_state(call_items(2**256 - 1), host=host)
    call(state, CallKind.CALL)
    forwarded = host.recorded_calls[0].gas
    before = state.gas_left + forwarded
    assert state.gas_left == before // 64


def test_call_pre_tangerine_whistle_out_of_gas():
    state = make_state(call_items(10**9), rev=Revision.FRONTIER)
    with pytest.raises(ExecutionError) as exc:
        call(state, CallKind.CALL)
    assert exc.value.status == Status.OUT_OF_GAS


def test_call_with_value_adds_stipend():
    host = Host(balances={SELF: 10**6, DST: 1})
    state = make_state(call_items(1000, value=5), host=host)
    call(state, CallKind.CALL)
    msg = host.recorded_calls[0]
    assert msg.gas == 1000 + 2300
    assert msg.value == 5


def test_call_with_value_to_missing_account_costs_more():
    existing = make_state(call_items(1000, value=5), host=Host(balances={SELF: 10**6, DST: 1}))
    missing = make_state(call_items(1000, value=5), host=Host(balances={SELF: 10**6}))
    call(existing, CallKind.CALL)
    call(missing, CallKind.CALL)
    assert missing.gas_left == existing.gas_left - 25000


def test_call_pre_spurious_dragon_charges_missing_account_without_value():
    existing = make_state(call_items(1000), host=Host(balances={DST: 1}), rev=Revision.TANGERINE_WHISTLE)
    missing = make_state(call_items(1000), rev=Revision.TANGERINE_WHISTLE)
    call(existing, CallKind.CALL)
    call(missing, CallKind.CALL)
    assert missing.gas_left == existing.gas_left - 25000


def test_call_cold_account_access_cost():
    warm_host = Host()
    warm_host.access_account(DST)
    warm = make_state(call_items(1000), host=warm_host)
    cold = make_state(call_items(1000))
    call(warm, CallKind.CALL)
    call(cold, CallKind.CALL)
    assert cold.gas_left == warm.gas_left - ADDITIONAL_COLD_ACCOUNT_ACCESS_COST


def test_call_with_value_in_static_context_is_violation():
    state = make_state(call_items(1000, value=1), is_static=True, host=Host(balances={SELF: 10}))
    with pytest.raises(ExecutionError) as exc:
        call(state, CallKind.CALL)
    assert exc.value.status == Status.STATIC_MODE_VIOLATION


def test_staticcall_sets_static_flag_and_takes_no_value():
    host = Host()
    state = make_state([99] + call_items(1000, with_value=False), host=host)
    call(state, CallKind.CALL, is_static=True)
    assert host.recorded_calls[0].is_static is True
    assert host.recorded_calls[0].value == 0
    assert state.stack[1] == 99


def test_delegatecall_keeps_sender_and_value():
    host = Host()
    state = make_state(call_items(1000, with_value=False), host=host)
    call(state, CallKind.DELEGATECALL)
    msg = host.recorded_calls[0]
    assert msg.sender == CALLER
    assert msg.value == 7
    assert msg.kind == CallKind.DELEGATECALL


def test_call_at_depth_limit_does_not_call():
    host = Host()
    state = make_state(call_items(1000), host=host, depth=1024)
    state.return_data = b"old"
    call(state, CallKind.CALL)
    assert host.recorded_calls == []
    assert state.stack.top() == 0
    assert state.return_data == b""


def test_call_with_insufficient_balance_does_not_call():
    host = Host(balances={SELF: 1, DST: 1})
    state = make_state(call_items(1000, value=5), host=host)
    call(state, CallKind.CALL)
    assert host.recorded_calls == []
    assert state.stack.top() == 0


def create_items(endowment=0, offset=0, size=0, salt=None):
    items = [] if salt is None else [salt]
    return items + [size, offset, endowment]


def test_create_success_pushes_address():
    host = Host(call_result=CallResult(create_address=NEW))
    state = make_state(create_items(offset=1, size=2), host=host)
    state.memory = bytearray(b"\x01\x02\x03" + bytes(29))
    create(state, CallKind.CREATE)
    assert state.stack.top() == int.from_bytes(NEW, "big")
    msg = host.recorded_calls[0]
    assert msg.kind == CallKind.CREATE
    assert msg.input_data == b"\x02\x03"
    assert msg.sender == SELF
    assert msg.depth == 1


def test_create2_passes_salt():
    host = Host()
    state = make_state(create_items(salt=0x1234), host=host)
    create(state, CallKind.CREATE2)
    msg = host.recorded_calls[0]
    assert msg.kind == CallKind.CREATE2
    assert msg.create2_salt == (0x1234).to_bytes(32, "big")


def test_create2_charges_for_hashing_init_code():
    host1 = Host(call_result=CallResult(gas_left=0))
    host2 = Host(call_result=CallResult(gas_left=0))
    plain = make_state(create_items(size=3), host=host1)
    salted = make_state(create_items(size=3, salt=1), host=host2)
    create(plain, CallKind.CREATE)
    create(salted, CallKind.CREATE2)
    plain_before = plain.gas_left + host1.recorded_calls[0].gas
    salted_before = salted.gas_left + host2.recorded_calls[0].gas
    assert plain_before - salted_before == 6


def test_create_forwards_all_but_one_64th():
    host = Host(call_result=CallResult(gas_left=0))
    state = make_state(create_items(), host=host)
    create(state, CallKind.CREATE)
    before = state.gas_left + host.recorded_calls[0].gas
    assert state.gas_left == before // 64


def test_create_pre_tangerine_whistle_forwards_all_gas():
    host = Host(call_result=CallResult(gas_left=500))
    state = make_state(create_items(), host=host, rev=Revision.FRONTIER)
    create(state, CallKind.CREATE)
    assert state.gas_left == 500


def test_create_failure_keeps_zero_and_return_data():
    host = Host(call_result=CallResult(status=Status.REVERT, output_data=b"err", create_address=NEW))
    state = make_state(create_items(), host=host)
    create(state, CallKind.CREATE)
    assert state.stack.top() == 0
    assert state.return_data == b"err"


def test_create_with_insufficient_balance_does_not_call():
    host = Host(balances={SELF: 1})
    state = make_state(create_items(endowment=10), host=host)
    create(state, CallKind.CREATE)
    assert host.recorded_calls == []
    assert state.stack.top() == 0


def test_create_at_depth_limit_does_not_call():
    host = Host()
    state = make_state(create_items(), host=host, depth=1024)
    create(state, CallKind.CREATE)
    assert host.recorded_calls == []
    assert state.stack.top() == 0


@pytest.mark.parametrize("kind", [CallKind.CREATE, CallKind.CREATE2])
def test_create_in_static_context_is_violation(kind):
    state = make_state(create_items(salt=0), is_static=True)
    with pytest.raises(ExecutionError) as exc:
        create(state, kind)
    assert exc.value.status == Status.STATIC_MODE_VIOLATION