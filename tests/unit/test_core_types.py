"""
test_core_types.py - Unit tests for core data structures

Tests:
- Move: creation, validation, immutability
- ProtocolEvent: construction and argument access
- PendingTransaction: intent ids and events
- Unit: rounding, factories, transfer rules
- Decimal helpers: to_decimal, quantize, bps_of
"""

import pytest
from dataclasses import FrozenInstanceError
from datetime import datetime
from decimal import Decimal, ROUND_UP

from ancient_lending import (
    Move, ProtocolEvent, PendingTransaction, TransactionOrigin, OriginType,
    Unit, UnitStateChange, TransferRuleViolation,
    stablecoin, whole_unit_transfer_rule,
    UNIT_TYPE_STABLECOIN, SYSTEM_WALLET,
)
from ancient_lending.core import to_decimal, quantize, is_representable, bps_of


def _origin(source_id: str = "test") -> TransactionOrigin:
    return TransactionOrigin(origin_type=OriginType.USER_ACTION, source_id=source_id)


# ============================================================================
# MOVE TESTS
# ============================================================================

class TestMoveCreation:
    """Tests for Move creation and validation."""

    def test_create_valid_move(self):
        move = Move(Decimal("100"), "USDT", "alice", "bob", "tx_001")
        assert move.source == "alice"
        assert move.dest == "bob"
        assert move.unit_symbol == "USDT"
        assert move.quantity == Decimal("100")
        assert move.metadata is None

    def test_float_quantity_rejected(self):
        with pytest.raises(ValueError, match="Decimal"):
            Move(100.0, "USDT", "alice", "bob", "tx_001")

    def test_zero_quantity_rejected(self):
        with pytest.raises(ValueError, match="zero"):
            Move(Decimal("0"), "USDT", "alice", "bob", "tx_001")

    def test_infinite_quantity_rejected(self):
        with pytest.raises(ValueError, match="finite"):
            Move(Decimal("Infinity"), "USDT", "alice", "bob", "tx_001")

    def test_same_source_and_dest_rejected(self):
        with pytest.raises(ValueError, match="different"):
            Move(Decimal("1"), "USDT", "alice", "alice", "tx_001")

    @pytest.mark.parametrize("field", ["source", "dest", "unit_symbol", "contract_id"])
    def test_blank_fields_rejected(self, field):
        kwargs = dict(quantity=Decimal("1"), unit_symbol="USDT", source="alice",
                      dest="bob", contract_id="tx")
        kwargs[field] = "  "
        with pytest.raises(ValueError, match="empty"):
            Move(**kwargs)

    def test_move_is_immutable(self):
        move = Move(Decimal("1"), "USDT", "alice", "bob", "tx")
        with pytest.raises(FrozenInstanceError):
            move.quantity = Decimal("2")


# ============================================================================
# PROTOCOL EVENT TESTS
# ============================================================================

class TestProtocolEvent:

    def test_of_preserves_argument_order(self):
        event = ProtocolEvent.of("Deposited", user="bob", amount=Decimal("1000"), shares_minted=Decimal("1000"))
        assert event.name == "Deposited"
        assert [k for k, _ in event.args] == ["user", "amount", "shares_minted"]

    def test_item_access(self):
        event = ProtocolEvent.of("InterestReceived", amount=Decimal("784"))
        assert event["amount"] == Decimal("784")
        assert event.args_dict == {"amount": Decimal("784")}
        with pytest.raises(KeyError):
            event["missing"]

    def test_events_are_hashable_values(self):
        a = ProtocolEvent.of("MortgageCompleted", token_id=1)
        b = ProtocolEvent.of("MortgageCompleted", token_id=1)
        assert a == b
        assert len({a, b}) == 1

    def test_repr(self):
        event = ProtocolEvent.of("MortgageCompleted", token_id=7)
        assert repr(event) == "MortgageCompleted(token_id=7)"


# ============================================================================
# PENDING TRANSACTION TESTS
# ============================================================================

class TestPendingTransaction:

    def test_intent_id_ignores_timestamp(self):
        moves = (Move(Decimal("5"), "USDT", "alice", "bob", "tx"),)
        a = PendingTransaction(moves, (), _origin(), datetime(2025, 1, 1))
        b = PendingTransaction(moves, (), _origin(), datetime(2030, 1, 1))
        assert a.intent_id == b.intent_id

    def test_intent_id_depends_on_origin(self):
        moves = (Move(Decimal("5"), "USDT", "alice", "bob", "tx"),)
        a = PendingTransaction(moves, (), _origin("alice#op-1"), datetime(2025, 1, 1))
        b = PendingTransaction(moves, (), _origin("alice#op-2"), datetime(2025, 1, 1))
        assert a.intent_id != b.intent_id

    def test_decimal_representation_does_not_change_intent(self):
        a = PendingTransaction((Move(Decimal("1.0"), "USDT", "alice", "bob", "tx"),), (), _origin(), datetime(2025, 1, 1))
        b = PendingTransaction((Move(Decimal("1.00"), "USDT", "alice", "bob", "tx"),), (), _origin(), datetime(2025, 1, 1))
        assert a.intent_id == b.intent_id

    def test_events_ride_along(self):
        event = ProtocolEvent.of("Transfer", source="alice", dest="bob", value=Decimal("5"))
        pending = PendingTransaction(
            (Move(Decimal("5"), "USDT", "alice", "bob", "tx"),), (), _origin(), datetime(2025, 1, 1),
            events=(event,),
        )
        assert pending.events == (event,)
        assert not pending.is_empty()

    def test_state_change_diff(self):
        sc = UnitStateChange("ASP", {"total_assets": Decimal("0"), "x": 1},
                             {"total_assets": Decimal("10"), "x": 1})
        assert sc.changed_fields() == {"total_assets": (Decimal("0"), Decimal("10"))}


# ============================================================================
# UNIT TESTS
# ============================================================================

class TestUnits:

    def test_stablecoin_factory(self):
        unit = stablecoin("USDT", "Tether USD")
        assert unit.unit_type == UNIT_TYPE_STABLECOIN
        assert unit.decimal_places == 6
        assert unit.min_balance == Decimal("0")
        assert unit.state == {"issuer": SYSTEM_WALLET, "decimals": 6, "allowances": {}}

    def test_stablecoin_rounds_down(self):
        unit = stablecoin("USDT", "Tether USD")
        assert unit.round(Decimal("1.0000009")) == Decimal("1.000000")

    def test_state_is_a_copy(self):
        unit = stablecoin("USDT", "Tether USD")
        state = unit.state
        state["issuer"] = "mallory"
        assert unit.state["issuer"] == SYSTEM_WALLET

    def test_whole_unit_transfer_rule(self):
        whole_unit_transfer_rule(None, Move(Decimal("1"), "MORTGAGE-1", "alice", "bob", "tx"))
        with pytest.raises(TransferRuleViolation):
            whole_unit_transfer_rule(None, Move(Decimal("0.5"), "MORTGAGE-1", "alice", "bob", "tx"))


# ============================================================================
# DECIMAL HELPER TESTS
# ============================================================================

class TestDecimalHelpers:

    def test_to_decimal_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_to_decimal_rejects_bool(self):
        with pytest.raises(TypeError):
            to_decimal(True)

    def test_quantize_defaults_to_round_down(self):
        assert quantize(Decimal("1.9999999"), 6) == Decimal("1.999999")
        assert quantize(Decimal("1.0000001"), 6, ROUND_UP) == Decimal("1.000001")

    def test_is_representable(self):
        assert is_representable(Decimal("1.123456"), 6)
        assert not is_representable(Decimal("1.1234567"), 6)

    def test_bps_of(self):
        assert bps_of(Decimal("150000"), 2000, 6) == Decimal("30000")
        assert bps_of(Decimal("800"), 200, 6) == Decimal("16")
        assert bps_of(Decimal("0.000001"), 3000, 6) == Decimal("0")
