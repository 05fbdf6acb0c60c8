"""Tests for MessageProjection routing and progress handling."""

import pytest

from projectionist import CancellationToken, MessageEnvelope, MessageProjection, handles_message
from tests.fixtures.projections import (
    AccountBalances,
    AccountOpened,
    AccountOwners,
    Ledger,
    LedgerConnection,
    MoneyDeposited,
    MoneyWithdrawn,
    OwnerRenamed,
    envelope,
)


@pytest.fixture
def connection(ledger: Ledger) -> LedgerConnection:
    return LedgerConnection(ledger)


def factory_for(connection):
    return lambda: connection


async def handle(projection, connection, env):
    await projection.handle(factory_for(connection), env, CancellationToken.none())


def test_connection_type_is_inferred():
    assert AccountBalances.connection_type is LedgerConnection
    assert AccountOwners.connection_type is LedgerConnection


def test_name_defaults_to_class_name():
    assert AccountBalances().name == "AccountBalances"


@pytest.mark.asyncio
async def test_fresh_projection_starts_at_zero(connection):
    assert await AccountBalances().get_next_sequence_number(factory_for(connection)) == 0
    assert await AccountOwners().get_next_sequence_number(factory_for(connection)) == 0


@pytest.mark.asyncio
async def test_routes_messages_to_handlers(connection, ledger):
    projection = AccountBalances()

    await handle(projection, connection, envelope(0, AccountOpened(account_id="a", owner="Alice")))
    await handle(projection, connection, envelope(1, MoneyDeposited(account_id="a", amount=100)))
    await handle(projection, connection, envelope(2, MoneyWithdrawn(account_id="a", amount=30)))

    assert ledger.balances == {"a": 70}
    assert await projection.get_next_sequence_number(factory_for(connection)) == 3


@pytest.mark.asyncio
async def test_unhandled_messages_still_advance_progress(connection, ledger):
    projection = AccountBalances()

    await handle(projection, connection, envelope(0, OwnerRenamed(account_id="a", owner="Bob")))

    assert ledger.balances == {}
    assert await projection.get_next_sequence_number(factory_for(connection)) == 1


@pytest.mark.asyncio
async def test_envelope_annotated_handler_receives_envelope(connection, ledger):
    projection = AccountOwners()

    await handle(projection, connection, envelope(4, AccountOpened(account_id="a", owner="Alice")))
    await handle(projection, connection, envelope(5, OwnerRenamed(account_id="a", owner="Alicia")))

    assert ledger.owners == {"a": "Alicia"}
    assert ledger.opened_at == {"a": 4}
    assert await projection.get_next_sequence_number(factory_for(connection)) == 6


@pytest.mark.asyncio
async def test_bare_envelope_annotation_handles_every_message(connection):
    class Audit(MessageProjection[LedgerConnection]):
        def __init__(self):
            self.seen: list[tuple[int, str]] = []
            self.position = 0

        @handles_message
        def on_any(self, envelope: MessageEnvelope, connection: LedgerConnection) -> None:
            self.seen.append((envelope.sequence_number, envelope.message_type))

        def load_next_sequence_number(self, connection: LedgerConnection) -> int:
            return self.position

        def store_next_sequence_number(self, connection: LedgerConnection, value: int) -> None:
            self.position = value

    audit = Audit()
    await handle(audit, connection, envelope(0, AccountOpened(account_id="a", owner="Alice")))
    await handle(audit, connection, envelope(1))

    assert audit.seen == [(0, "AccountOpened"), (1, "MoneyDeposited")]


@pytest.mark.asyncio
async def test_subclass_handler_overrides_base_handler(connection, ledger):
    class DoubleDeposits(AccountBalances):
        @handles_message
        async def on_deposited_twice(
            self, message: MoneyDeposited, connection: LedgerConnection
        ) -> None:
            connection.ledger.balances[message.account_id] += 2 * message.amount

    projection = DoubleDeposits()
    await handle(projection, connection, envelope(0, AccountOpened(account_id="a", owner="A")))
    await handle(projection, connection, envelope(1, MoneyDeposited(account_id="a", amount=5)))

    assert ledger.balances == {"a": 10}


def test_handler_without_annotation_is_rejected():
    with pytest.raises(ValueError, match="must have a type annotation"):

        @handles_message
        def on_anything(self, message, connection):
            pass


def test_handler_without_message_parameter_is_rejected():
    with pytest.raises(ValueError, match="at least 2 parameters"):

        @handles_message
        def on_nothing(self):
            pass
