"""Unit tests for credit score initialisation and adjustments."""

import unittest

from stakecredit.models.enums import ScoreReason
from stakecredit.models.exceptions import AlreadyInitialized, ScoreNotFound, Unauthorized
from stakecredit.tests.helpers import OWNER, make_services, make_settings


class CreditScoreEngineTests(unittest.TestCase):
    """Validate score bounds, counters and stats."""

    def setUp(self) -> None:
        self.services = make_services()
        self.scores = self.services.scores

    def test_initialize_starts_at_initial_score(self) -> None:
        record = self.scores.initialize(OWNER, signer=OWNER)
        self.assertEqual(record.score, 500)
        self.assertEqual(record.total_payments, 0)
        self.assertIsNone(record.last_reason)

    def test_initialize_twice_rejected(self) -> None:
        self.scores.initialize(OWNER, signer=OWNER)
        with self.assertRaises(AlreadyInitialized):
            self.scores.initialize(OWNER, signer=OWNER)

    def test_initialize_requires_owner_signature(self) -> None:
        with self.assertRaises(Unauthorized):
            self.scores.initialize(OWNER, signer="mallory")

    def test_configured_initial_score(self) -> None:
        services = make_services(make_settings(initial_score=650))
        self.assertEqual(services.scores.initialize(OWNER, signer=OWNER).score, 650)

    def test_reason_deltas(self) -> None:
        self.assertEqual(self.scores.delta_for(ScoreReason.ON_TIME_PAYMENT), 5)
        self.assertEqual(self.scores.delta_for(ScoreReason.COMPLETION), 20)
        self.assertEqual(self.scores.delta_for(ScoreReason.LATE_RECOVERED), -20)
        self.assertEqual(self.scores.delta_for(ScoreReason.DEFAULT), -50)

    def test_apply_reason_updates_score_and_counter_together(self) -> None:
        self.scores.initialize(OWNER, signer=OWNER)
        record = self.scores.apply_reason(OWNER, ScoreReason.LATE_RECOVERED)
        self.assertEqual(record.score, 480)
        self.assertEqual(record.late_count, 1)
        self.assertEqual(record.last_reason, ScoreReason.LATE_RECOVERED)
        self.assertEqual(record.last_updated, self.services.clock.now())
        self.assertEqual(self.scores.get_score(OWNER).late_count, 1)

    def test_score_is_clamped(self) -> None:
        self.scores.initialize(OWNER, signer=OWNER)
        self.assertEqual(self.scores.apply_delta(OWNER, 900, ScoreReason.ON_TIME_PAYMENT).score, 1000)
        self.assertEqual(self.scores.apply_delta(OWNER, -5000, ScoreReason.DEFAULT).score, 0)
        stored = self.scores.get_score(OWNER)
        self.assertEqual(stored.on_time_count, 1)
        self.assertEqual(stored.default_count, 1)

    def test_adjusting_unknown_owner(self) -> None:
        with self.assertRaises(ScoreNotFound):
            self.scores.apply_reason("bob", ScoreReason.ON_TIME_PAYMENT)
        with self.assertRaises(ScoreNotFound):
            self.scores.get_score("bob")

    def test_payment_stats(self) -> None:
        self.scores.initialize(OWNER, signer=OWNER)
        self.scores.apply_reason(OWNER, ScoreReason.ON_TIME_PAYMENT)
        self.scores.apply_reason(OWNER, ScoreReason.ON_TIME_PAYMENT)
        self.scores.apply_reason(OWNER, ScoreReason.ON_TIME_PAYMENT)
        self.scores.apply_reason(OWNER, ScoreReason.DEFAULT)
        stats = self.scores.get_payment_stats(OWNER)
        self.assertEqual(stats["score"], 465)
        self.assertEqual(stats["total_payments"], 4)
        self.assertEqual(stats["on_time_percentage"], 75.0)


if __name__ == "__main__":
    unittest.main()
