"""
Staged event log and address helpers.
"""
from curve_sale import events
from curve_sale.crypto import (
    ZERO_ADDRESS,
    address_from_label,
    generate_signing_keypair,
    is_valid_address,
    is_zero_address,
    sign_message,
    verify_message,
)
from curve_sale.events import EventLog


def test_staged_events_published_on_commit():
    log = EventLog()
    received = []
    log.subscribe(received.append)

    log.emit(events.TRADE_EXECUTED, 1, side="buy")
    assert log.events == []

    log.commit()
    assert [e.name for e in log.events] == [events.TRADE_EXECUTED]
    assert received[0].data == {'side': 'buy'}


def test_rollback_discards_staged():
    log = EventLog()
    log.emit(events.WITHDRAWAL_PAID, 1, amount=5)

    log.rollback()
    log.commit()

    assert log.events == []


def test_failing_subscriber_does_not_block_others():
    log = EventLog()
    received = []

    def broken(event):
        raise RuntimeError("subscriber down")

    log.subscribe(broken)
    log.subscribe(received.append)
    log.emit(events.RESERVES_UPDATED, 1)
    log.commit()

    assert len(received) == 1


def test_addresses():
    address = address_from_label("alice")
    assert is_valid_address(address)
    assert address == address_from_label("alice")
    assert address != address_from_label("bob")
    assert is_zero_address(ZERO_ADDRESS)
    assert not is_valid_address("0x1234")
    assert not is_valid_address(None)


def test_signatures():
    signing_key, verify_key = generate_signing_keypair()
    signature = sign_message(signing_key, b"grant")

    assert verify_message(verify_key, b"grant", signature)
    assert not verify_message(verify_key, b"grant!", signature)
    assert not verify_message(verify_key, b"grant", b"short")
