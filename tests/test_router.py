import json
import logging
import random
import tempfile
import unittest
from pathlib import Path

from chat_economy import results
from chat_economy.blackjack import IN_PROGRESS, WIN
from chat_economy.config import normalize_config
from chat_economy.services.router import (
    EconomyService,
    acquire_writer_lock,
    build_router,
    release_writer_lock,
)

from .fakes import FakeClock, ScriptedRandom, card

TEST_LOG = logging.getLogger("chat_economy.tests")


class RouterTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.base_dir = Path(self._tmp.name)
        self.clock = FakeClock()
        self.rng = ScriptedRandom()
        self.cfg = normalize_config({})
        self.router = build_router(self.cfg, self.base_dir, rng=self.rng, clock=self.clock, log=TEST_LOG)
        self.ledger = self.router.ledger

    def tearDown(self):
        self._tmp.cleanup()

    def cmd(self, user, text, **kw):
        command, args = self.router.parse_command(text)
        return self.router.handle_command(user, command, args, **kw)

    def fund(self, user, amount):
        self.ledger.deposit(user, amount)


class TestCommandParsing(RouterTestCase):
    def test_parse_command(self):
        self.assertEqual(self.router.parse_command("!Bal"), ("bal", []))
        self.assertEqual(self.router.parse_command("!cf 100  heads"), ("cf", ["100", "heads"]))
        self.assertIsNone(self.router.parse_command("hello"))
        self.assertIsNone(self.router.parse_command("!"))
        self.assertIsNone(self.router.parse_command(None))

    def test_unknown_command(self):
        r = self.router.handle_command("alice", "fly", [])
        self.assertEqual(r.error_code, results.UNKNOWN_COMMAND)


class TestAccountCommands(RouterTestCase):
    def test_balance_without_account(self):
        self.assertEqual(self.cmd("alice", "!balance").error_code, results.NO_ACCOUNT)

    def test_deposit_is_streamer_only(self):
        r = self.cmd("alice", "!deposit 500")
        self.assertEqual(r.error_code, results.NOT_PERMITTED)
        self.assertIsNone(self.ledger.get_balance("alice"))

        r = self.cmd("streamer", "!deposit 1,000", is_broadcaster=True)
        self.assertTrue(r.success)
        self.assertEqual(r.new_balance, 1000)

        r = self.cmd("streamer", "!deposit @Alice 500", is_broadcaster=True)
        self.assertEqual(r.data["username"], "alice")
        self.assertEqual(self.cmd("alice", "!points").new_balance, 500)

    def test_manual_deposit_for_mods(self):
        self.assertEqual(self.cmd("alice", "!manualdeposit 500").error_code, results.NOT_PERMITTED)
        self.assertTrue(self.cmd("mod", "!manualdeposit @bob 300", is_mod=True).success)
        self.assertEqual(self.ledger.balance_of("bob"), 300)

    def test_eco_reset(self):
        self.fund("alice", 500)
        self.assertEqual(self.cmd("alice", "!ecoreset").error_code, results.NOT_PERMITTED)
        self.assertTrue(self.cmd("mod", "!ecoreset", is_mod=True).success)
        self.assertEqual(self.ledger.balance_of("alice"), 0)

    def test_leaderboard_and_history(self):
        self.fund("alice", 500)
        self.fund("bob", 900)
        for _ in range(4):
            self.rng.push(1)
            self.cmd("alice", "!cf 100 heads")

        top = self.cmd("carol", "!lb").data["entries"]
        self.assertEqual([e["username"] for e in top], ["bob", "alice"])
        hist = self.cmd("alice", "!history").data["transactions"]
        self.assertEqual(len(hist), 5)

    def test_all_in_stats(self):
        self.fund("alice", 100)
        self.rng.push(0)
        self.cmd("alice", "!coinflip all heads")
        self.rng.push(1)
        self.cmd("alice", "!coinflip allin heads")

        r = self.cmd("alice", "!allin")
        self.assertEqual(r.data, {"wins": 1, "losses": 1, "total": 2, "win_rate": 50})


class TestGameCommands(RouterTestCase):
    def test_all_in_coinflip_alias(self):
        self.fund("alice", 300)
        self.rng.push(0)
        r = self.cmd("alice", "!cf all h")
        self.assertTrue(r.is_all_in)
        self.assertEqual(r.new_balance, 600)

    def test_gamble_dispatcher(self):
        self.fund("alice", 1000)
        self.rng.push(5, 0)
        r = self.cmd("alice", "!gamble dice 100")
        self.assertEqual(r.game, "dice")
        self.assertEqual(r.new_balance, 1050)

    def test_usage_and_bad_bets(self):
        self.fund("alice", 1000)
        self.assertEqual(self.cmd("alice", "!coinflip 100").error_code, results.USAGE)
        self.assertEqual(self.cmd("alice", "!gamble").error_code, results.USAGE)
        self.assertEqual(self.cmd("alice", "!slots abc").error_code, results.INVALID_BET)
        self.assertEqual(self.cmd("alice", "!slots -5").error_code, results.INVALID_BET)
        self.assertEqual(self.cmd("bob", "!slots all").error_code, results.INSUFFICIENT_FUNDS)
        self.assertEqual(self.cmd("alice", "!gamble poker 100").error_code, results.UNKNOWN_GAME)

    def test_blackjack_flow(self):
        self.fund("alice", 1000)
        self.rng.push(card(10), card(9), card(10), card(7))
        r = self.cmd("alice", "!bj 200")
        self.assertEqual(r.state, IN_PROGRESS)

        again = self.cmd("alice", "!blackjack 200")
        self.assertEqual(again.error_code, results.SESSION_ALREADY_ACTIVE)

        r = self.cmd("alice", "!stand")
        self.assertEqual(r.state, WIN)
        self.assertEqual(self.ledger.balance_of("alice"), 1200)
        self.assertEqual(self.cmd("alice", "!hit").error_code, results.NO_ACTIVE_SESSION)

    def test_blackjack_after_idle_hand_deals_new_one(self):
        self.fund("alice", 1000)
        self.rng.push(card(10), card(6), card(10), card(7))
        self.cmd("alice", "!blackjack 200")
        self.clock.advance(300)

        self.rng.push(card(10), card(9), card(10), card(7))
        r = self.cmd("alice", "!blackjack 200")

        self.assertTrue(r.success)
        self.assertEqual(r.state, IN_PROGRESS)
        self.assertEqual(r.user_cards, [10, 9])
        self.assertEqual(self.ledger.balance_of("alice"), 600)

    def test_bare_blackjack_shows_live_hand(self):
        self.fund("alice", 1000)
        self.assertEqual(self.cmd("alice", "!blackjack").error_code, results.USAGE)
        self.rng.push(card(10), card(6), card(10), card(7))
        self.cmd("alice", "!bj 200")
        r = self.cmd("alice", "!bj")
        self.assertEqual(r.error_code, results.SESSION_ALREADY_ACTIVE)
        self.assertEqual(r.user_cards, [10, 6])


class TestBalanceInvariant(unittest.TestCase):
    USERS = ("alice", "bob", "carol", "dave")
    TEMPLATES = (
        "!cf {bet} heads",
        "!dice {bet}",
        "!slots {bet}",
        "!roulette {bet} {pick}",
        "!wheel {bet}",
        "!rps {bet} paper",
        "!bj {bet}",
        "!hit",
        "!stand",
        "!duel @{other} {bet}",
        "!accept",
        "!decline",
        "!give @{other} {bet}",
        "!rain {bet} max",
        "!buy challenge @{other}",
    )

    def test_balances_never_go_negative(self):
        with tempfile.TemporaryDirectory() as td:
            clock = FakeClock()
            rng = random.Random(20240501)
            router = build_router(normalize_config({}), Path(td), rng=rng, clock=clock, log=TEST_LOG)
            driver = random.Random(7)
            for u in self.USERS:
                router.ledger.deposit(u, 3000)

            for step in range(600):
                user = driver.choice(self.USERS)
                text = driver.choice(self.TEMPLATES).format(
                    bet=driver.choice(["100", "150", "250", "700", "all", "5000"]),
                    other=driver.choice(self.USERS),
                    pick=driver.choice(["red", "odd", "17", "0"]),
                )
                command, args = router.parse_command(text)
                router.handle_command(user, command, args)
                clock.advance(driver.choice([1, 5, 30, 90]))
                if step % 50 == 0:
                    router.sweep()

                for acct in router.ledger.get_leaderboard(100):
                    self.assertGreaterEqual(acct.balance, 0, f"{acct.username} after {text!r}")


class TestRetentionConfig(RouterTestCase):
    def test_max_transactions_from_config(self):
        cfg = normalize_config({"state": {"max_transactions": "3"}})
        router = build_router(cfg, self.base_dir / "capped", clock=self.clock, log=TEST_LOG)
        for _ in range(5):
            router.ledger.deposit("alice", 10)
        self.assertEqual(router.ledger.transaction_count(), 3)


class TestSocialCommands(RouterTestCase):
    def test_duel_via_chat(self):
        self.fund("alice", 2000)
        self.fund("bob", 2000)
        r = self.cmd("alice", "!duel @bob 500")
        self.assertTrue(r.success)

        self.rng.push(0)
        r = self.cmd("bob", "!duel accept")
        self.assertEqual(r.winner, "alice")
        self.assertEqual((self.ledger.balance_of("alice"), self.ledger.balance_of("bob")), (2500, 1500))

    def test_accept_and_decline_shorthand(self):
        self.fund("alice", 2000)
        self.fund("bob", 2000)
        self.cmd("alice", "!duel bob 300")
        self.assertTrue(self.cmd("bob", "!deny @alice").success)
        self.assertEqual(self.ledger.balance_of("alice"), 2000)

        self.cmd("alice", "!duel bob 300")
        self.rng.push(1)
        self.assertEqual(self.cmd("bob", "!acceptduel alice").winner, "bob")

    def test_buy_challenge(self):
        self.fund("alice", 5000)
        r = self.cmd("alice", "!buy challenge @bob")
        self.assertTrue(r.success)
        self.assertEqual(self.ledger.balance_of("alice"), 3000)
        self.assertEqual(self.cmd("alice", "!actions").data["actions"]["challenge"], 2000)

    def test_give(self):
        self.fund("alice", 1000)
        r = self.cmd("alice", "!give @bob 200")
        self.assertTrue(r.success)
        self.assertEqual(self.ledger.balance_of("alice"), 700)
        self.assertEqual(self.cmd("alice", "!give bob lots").error_code, results.INVALID_AMOUNT)

    def test_rain_uses_recent_chatters(self):
        self.fund("alice", 1000)
        self.router.note_activity("stale")
        self.clock.advance(301)
        self.router.note_activity("bob")
        self.router.note_activity("carol")

        r = self.cmd("alice", "!rain 200 max")

        self.assertEqual(r.data["payouts"], {"bob": 100, "carol": 100})
        self.assertIsNone(self.ledger.get_balance("stale"))
        self.assertEqual(self.router.active_chatters(), ["alice", "bob", "carol"])

    def test_sweep_expires_hands_and_duels(self):
        self.fund("alice", 2000)
        self.fund("bob", 2000)
        self.rng.push(card(10), card(6), card(10), card(7))
        self.cmd("alice", "!blackjack 200")
        self.cmd("bob", "!duel alice 500")
        self.clock.advance(200)

        swept = self.router.sweep()

        self.assertEqual(swept, {"blackjack": ["alice"], "duels": [["bob", "alice"]]})
        self.assertEqual(self.ledger.balance_of("bob"), 2000)
        self.assertEqual(self.ledger.balance_of("alice"), 1800)


class TestEconomyService(RouterTestCase):
    def write_inbox(self, service, *records):
        with service.inbox.open("a", encoding="utf-8") as f:
            for rec in records:
                f.write(json.dumps(rec) + "\n")

    def read_outbox(self, service):
        lines = service.outbox.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

    def test_poll_routes_records_and_persists_offset(self):
        service = EconomyService(self.base_dir, self.cfg, self.router, TEST_LOG)
        self.write_inbox(
            service,
            {"type": "chat", "user": "Streamer", "text": "!deposit 1000", "is_broadcaster": True, "id": "a1"},
            {"type": "chat", "user": "bob", "text": "just chatting"},
            {"type": "command", "user": "streamer", "command": "balance", "args": []},
            {"type": "command", "command": "balance"},
        )

        self.assertEqual(service.poll_once(), 4)

        out = self.read_outbox(service)
        self.assertEqual(len(out), 2)
        self.assertEqual(out[0]["request_id"], "a1")
        self.assertEqual(out[0]["result"]["new_balance"], 1000)
        self.assertEqual(out[1]["result"]["kind"], "balance")
        self.assertIn("bob", self.router.active_chatters())

        offsets = json.loads(service.offsets_path.read_text(encoding="utf-8"))
        self.assertEqual(offsets["inbox_offset_bytes"], service.inbox.stat().st_size)
        self.assertEqual(service.poll_once(), 0)

    def test_ledger_snapshot_written(self):
        self.fund("alice", 100)
        path = self.base_dir / "state" / "ledger.json"
        self.assertEqual(json.loads(path.read_text(encoding="utf-8"))["accounts"]["alice"]["balance"], 100)


class TestWriterLock(unittest.TestCase):
    def test_second_writer_is_refused(self):
        with tempfile.TemporaryDirectory() as td:
            lock = Path(td) / "state" / "economy.lock"
            fd = acquire_writer_lock(lock, TEST_LOG)
            self.assertIsNotNone(fd)
            with self.assertLogs(TEST_LOG, level="ERROR"):
                self.assertIsNone(acquire_writer_lock(lock, TEST_LOG))
            release_writer_lock(fd, lock)
            self.assertFalse(lock.exists())

    def test_stale_lock_is_replaced(self):
        with tempfile.TemporaryDirectory() as td:
            lock = Path(td) / "economy.lock"
            lock.write_text("{}", encoding="utf-8")
            fd = acquire_writer_lock(lock, TEST_LOG)
            self.assertIsNotNone(fd)
            release_writer_lock(fd, lock)


if __name__ == "__main__":
    unittest.main()
