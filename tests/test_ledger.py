import json
import tempfile
import unittest
from pathlib import Path

from chat_economy.ledger import TX_DEPOSIT, TX_LOSS, TX_PURCHASE, TX_RESET, TX_WIN, TX_WITHDRAW, Ledger

from .fakes import FakeClock


class TestLedgerBalances(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.ledger = Ledger(clock=self.clock)

    def test_deposit_creates_account_and_logs_transaction(self):
        self.ledger.deposit("@Alice", 500)

        acct = self.ledger.get_balance("alice")
        self.assertEqual(acct.balance, 500)
        self.assertEqual(acct.total_deposited, 500)
        txs = self.ledger.get_transactions("alice")
        self.assertEqual(len(txs), 1)
        self.assertEqual(txs[0].type, TX_DEPOSIT)
        self.assertEqual(txs[0].amount, 500)

    def test_deposit_rejects_non_positive(self):
        with self.assertRaises(ValueError):
            self.ledger.deposit("alice", 0)
        self.assertIsNone(self.ledger.get_balance("alice"))

    def test_get_balance_returns_copy(self):
        self.ledger.deposit("alice", 100)
        acct = self.ledger.get_balance("alice")
        acct.balance = 999999
        self.assertEqual(self.ledger.balance_of("alice"), 100)

    def test_withdraw_over_balance_changes_nothing(self):
        self.ledger.deposit("bob", 100)
        before = self.ledger.transaction_count()

        self.assertFalse(self.ledger.withdraw("bob", 101))

        self.assertEqual(self.ledger.balance_of("bob"), 100)
        self.assertEqual(self.ledger.transaction_count(), before)

    def test_withdraw_unknown_account_fails(self):
        self.assertFalse(self.ledger.withdraw("ghost", 1))
        self.assertEqual(self.ledger.transaction_count(), 0)

    def test_withdraw_success(self):
        self.ledger.deposit("bob", 100)
        self.assertTrue(self.ledger.withdraw("bob", 40, "Duel stake"))
        self.assertEqual(self.ledger.balance_of("bob"), 60)
        self.assertEqual(self.ledger.get_transactions("bob", 1)[0].type, TX_WITHDRAW)

    def test_add_win_creates_account(self):
        self.ledger.add_win("carol", 250, "Rain", is_all_in=True)
        acct = self.ledger.get_balance("carol")
        self.assertEqual(acct.balance, 250)
        self.assertEqual(acct.total_won, 250)
        self.assertEqual(acct.all_in_wins, 1)

    def test_add_loss_floors_at_zero(self):
        self.ledger.deposit("dave", 50)
        self.ledger.add_loss("dave", 80, "Slots", is_all_in=True)
        acct = self.ledger.get_balance("dave")
        self.assertEqual(acct.balance, 0)
        self.assertEqual(acct.total_lost, 80)
        self.assertEqual(acct.all_in_losses, 1)

    def test_add_loss_without_account_is_noop(self):
        self.ledger.add_loss("nobody", 10, "x")
        self.assertIsNone(self.ledger.get_balance("nobody"))
        self.assertEqual(self.ledger.transaction_count(), 0)

    def test_stake_is_loss_typed_and_checked(self):
        self.ledger.deposit("erin", 300)
        self.assertFalse(self.ledger.stake("erin", 301, "Blackjack"))
        self.assertTrue(self.ledger.stake("erin", 200, "Blackjack"))
        self.assertEqual(self.ledger.balance_of("erin"), 100)
        self.assertEqual(self.ledger.get_transactions("erin", 1)[0].type, TX_LOSS)

    def test_purchase_logs_withdraw_and_purchase(self):
        self.ledger.deposit("fay", 1000)
        self.assertTrue(self.ledger.purchase("fay", 300, "Action: highlight"))
        self.assertEqual(self.ledger.balance_of("fay"), 700)
        types = {t.type for t in self.ledger.get_transactions("fay", 10)}
        self.assertIn(TX_PURCHASE, types)
        self.assertIn(TX_WITHDRAW, types)

    def test_purchase_insufficient(self):
        self.ledger.deposit("fay", 100)
        self.assertFalse(self.ledger.purchase("fay", 300, "Action: highlight"))
        self.assertEqual(self.ledger.transaction_count(), 1)

    def test_transaction_ids_strictly_increase(self):
        self.ledger.deposit("a", 10)
        self.ledger.add_win("a", 5, "w")
        self.ledger.add_loss("a", 3, "l")
        ids = sorted(t.id for t in self.ledger.get_transactions("a", 10))
        self.assertEqual(ids, [1, 2, 3])

    def test_history_newest_first_and_limited(self):
        self.ledger.deposit("a", 10)
        for i in range(7):
            self.clock.advance(1)
            self.ledger.add_win("a", i + 1, f"w{i}")
        txs = self.ledger.get_transactions("a", 5)
        self.assertEqual(len(txs), 5)
        self.assertEqual(txs[0].amount, 7)
        self.assertGreater(txs[0].id, txs[-1].id)

    def test_history_orders_by_append_not_timestamp_text(self):
        self.ledger.deposit("a", 10)
        self.clock.now = 0.0  # older clock reading, later append
        self.ledger.add_win("a", 5, "w")
        self.assertEqual([t.amount for t in self.ledger.get_transactions("a", 2)], [5, 10])

    def test_max_transactions_keeps_newest(self):
        led = Ledger(clock=self.clock, max_transactions=3)
        for i in range(5):
            led.deposit("a", i + 1)
        self.assertEqual(led.transaction_count(), 3)
        self.assertEqual([t.amount for t in led.get_transactions("a", 10)], [5, 4, 3])

    def test_refund_does_not_count_as_win(self):
        self.ledger.deposit("a", 500)
        self.ledger.stake("a", 200, "Blackjack")
        self.ledger.refund("a", 200, "push", reverses_loss=True)
        acct = self.ledger.get_balance("a")
        self.assertEqual((acct.balance, acct.total_won, acct.total_lost), (500, 0, 0))

    def test_leaderboard_sorted_by_balance(self):
        self.ledger.deposit("low", 10)
        self.ledger.deposit("high", 1000)
        self.ledger.deposit("mid", 500)
        names = [a.username for a in self.ledger.get_leaderboard(2)]
        self.assertEqual(names, ["high", "mid"])

    def test_reset_zeroes_balances_keeps_deposit_totals(self):
        self.ledger.deposit("a", 100)
        self.ledger.add_win("a", 50, "w", is_all_in=True)
        self.ledger.reset_economy()
        acct = self.ledger.get_balance("a")
        self.assertEqual(acct.balance, 0)
        self.assertEqual(acct.total_won, 0)
        self.assertEqual(acct.all_in_wins, 0)
        self.assertEqual(acct.total_deposited, 100)
        self.assertEqual(self.ledger.get_transactions("system", 1)[0].type, TX_RESET)


class TestLedgerPersistence(unittest.TestCase):
    def test_snapshot_survives_reload(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "state" / "ledger.json"
            led = Ledger(path)
            led.deposit("alice", 1000)
            led.add_win("alice", 100, "Coin flip", is_all_in=True)

            again = Ledger(path)
            self.assertEqual(again.balance_of("alice"), 1100)
            self.assertEqual(again.get_balance("alice").all_in_wins, 1)
            self.assertEqual(again.transaction_count(), 2)

            again.add_loss("alice", 100, "Dice")
            self.assertEqual(again.get_transactions("alice", 1)[0].id, 3)

    def test_missing_file_is_created(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "ledger.json"
            Ledger(path)
            self.assertTrue(path.exists())
            self.assertEqual(json.loads(path.read_text(encoding="utf-8"))["next_transaction_id"], 1)

    def test_corrupt_file_is_not_overwritten_on_load(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "ledger.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertLogs("chat_economy.ledger", level="WARNING"):
                led = Ledger(path)
            self.assertEqual(led.transaction_count(), 0)
            self.assertEqual(path.read_text(encoding="utf-8"), "{not json")

    def test_loads_legacy_camel_case_document(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "db.json"
            path.write_text(
                json.dumps(
                    {
                        "userBalances": {
                            "Alice": {"username": "Alice", "balance": 420, "totalDeposited": 500, "allInWins": 2}
                        },
                        "transactions": [
                            {"id": 7, "username": "alice", "type": "deposit", "amount": 500, "description": "d", "timestamp": "t"}
                        ],
                        "nextTransactionId": 3,
                    }
                ),
                encoding="utf-8",
            )
            led = Ledger(path)
            acct = led.get_balance("alice")
            self.assertEqual(acct.balance, 420)
            self.assertEqual(acct.total_deposited, 500)
            self.assertEqual(acct.all_in_wins, 2)
            led.deposit("alice", 1)
            self.assertEqual(led.get_transactions("alice", 1)[0].id, 8)


if __name__ == "__main__":
    unittest.main()
