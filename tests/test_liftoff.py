"""Tests for the Lift-Off challenge lifecycle and XP settlement."""

from datetime import datetime, timedelta

import pytest

from database import LiftOffChallenge, MonthlyXP, UserStats
from errors import (
    InsufficientXp, InvalidInput, InvalidParticipant, InvalidStateTransition, NotFound
)
import liftoff

NOW = datetime(2025, 3, 10, 12, 0, 0)


def stats_of(db, user_id):
    db.expire_all()
    return db.query(UserStats).filter(UserStats.user_id == user_id).one()


@pytest.fixture
def players(make_user):
    make_user("chris", cumulative_xp=500, current_month_xp=500)
    make_user("dana", cumulative_xp=300, current_month_xp=300)


@pytest.fixture
def accepted(db, players):
    challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
    liftoff.accept_challenge(db, challenge.id, "dana", now=NOW)
    return challenge.id


class TestCreate:
    def test_creates_pending_with_expiry(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
        assert challenge.status == liftoff.PENDING
        assert challenge.expires_at == NOW + timedelta(days=7)
        assert challenge.winner_id is None

    def test_self_challenge_rejected(self, db, players):
        with pytest.raises(InvalidParticipant):
            liftoff.create_challenge(db, "chris", "chris", "deadlift", 10, now=NOW)

    def test_wager_above_balance(self, db, players):
        with pytest.raises(InsufficientXp) as exc:
            liftoff.create_challenge(db, "chris", "dana", "deadlift", 501, now=NOW)
        assert exc.value.details["available_xp"] == 500
        assert db.query(LiftOffChallenge).count() == 0

    def test_whole_balance_can_be_staked(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 500, now=NOW)
        assert challenge.wager_xp == 500

    @pytest.mark.parametrize("wager", [0, -5])
    def test_wager_must_be_positive(self, db, players, wager):
        with pytest.raises(InvalidInput):
            liftoff.create_challenge(db, "chris", "dana", "deadlift", wager, now=NOW)

    def test_unknown_opponent(self, db, players):
        with pytest.raises(NotFound):
            liftoff.create_challenge(db, "chris", "nobody", "deadlift", 10, now=NOW)

    def test_legacy_balance_resolved(self, db, make_user):
        # level 3 with 50 stored the old way = 433 available
        make_user("old", level=3, cumulative_xp=50, xp_is_cumulative=False)
        make_user("dana", cumulative_xp=300)
        challenge = liftoff.create_challenge(db, "old", "dana", "deadlift", 400, now=NOW)
        assert challenge.wager_xp == 400


class TestAcceptDecline:
    def test_accept(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
        accepted = liftoff.accept_challenge(db, challenge.id, "dana", now=NOW + timedelta(hours=1))
        assert accepted.status == liftoff.ACCEPTED
        assert accepted.accepted_at == NOW + timedelta(hours=1)

    def test_only_challenged_user_accepts(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
        with pytest.raises(InvalidParticipant):
            liftoff.accept_challenge(db, challenge.id, "chris", now=NOW)

    def test_balance_rechecked_at_accept(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
        dana = stats_of(db, "dana")
        dana.cumulative_xp = 150
        db.commit()
        with pytest.raises(InsufficientXp):
            liftoff.accept_challenge(db, challenge.id, "dana", now=NOW)
        assert db.get(LiftOffChallenge, challenge.id).status == liftoff.PENDING

    def test_cannot_accept_twice(self, db, accepted):
        with pytest.raises(InvalidStateTransition):
            liftoff.accept_challenge(db, accepted, "dana", now=NOW)

    def test_decline(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
        with pytest.raises(InvalidParticipant):
            liftoff.decline_challenge(db, challenge.id, "chris", now=NOW)
        declined = liftoff.decline_challenge(db, challenge.id, "dana", now=NOW)
        assert declined.status == liftoff.DECLINED
        with pytest.raises(InvalidStateTransition):
            liftoff.accept_challenge(db, challenge.id, "dana", now=NOW)

    def test_cannot_decline_accepted(self, db, accepted):
        with pytest.raises(InvalidStateTransition):
            liftoff.decline_challenge(db, accepted, "dana", now=NOW)

    def test_missing_challenge(self, db, players):
        with pytest.raises(NotFound):
            liftoff.accept_challenge(db, 999, "dana", now=NOW)


class TestSubmitAndSettle:
    def test_wager_flow(self, db, accepted):
        first = liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        assert first.status == liftoff.ACCEPTED
        assert first.challenger_weight == 100
        assert first.challenger_completed_at == NOW

        final = liftoff.submit_weight(db, accepted, "dana", 90, now=NOW)
        assert final.status == liftoff.COMPLETED
        assert final.winner_id == "chris"

        chris, dana = stats_of(db, "chris"), stats_of(db, "dana")
        assert chris.cumulative_xp == 700
        assert chris.level == 3
        assert chris.challenges_won == 1
        assert chris.current_month_xp == 700
        assert dana.cumulative_xp == 100
        assert dana.level == 2
        assert dana.challenges_won == 0
        assert dana.current_month_xp == 100

    def test_challenged_can_win(self, db, accepted):
        liftoff.submit_weight(db, accepted, "dana", 120, now=NOW)
        final = liftoff.submit_weight(db, accepted, "chris", 110, now=NOW)
        assert final.winner_id == "dana"
        assert stats_of(db, "dana").cumulative_xp == 500
        assert stats_of(db, "chris").cumulative_xp == 300

    def test_loser_floored_at_zero(self, db, make_user):
        make_user("chris", cumulative_xp=500)
        make_user("dana", cumulative_xp=100)
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 80, now=NOW)
        liftoff.accept_challenge(db, challenge.id, "dana", now=NOW)
        # dana drops below the wager before the lift-off settles
        dana = stats_of(db, "dana")
        dana.cumulative_xp = 50
        dana.level = 1
        db.commit()

        liftoff.submit_weight(db, challenge.id, "chris", 140, now=NOW)
        liftoff.submit_weight(db, challenge.id, "dana", 100, now=NOW)
        dana = stats_of(db, "dana")
        assert dana.cumulative_xp == 0
        assert dana.level == 1
        assert dana.current_month_xp == 0
        assert stats_of(db, "chris").cumulative_xp == 580

    def test_tie_is_a_draw(self, db, accepted):
        liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        final = liftoff.submit_weight(db, accepted, "dana", 100, now=NOW)
        assert final.status == liftoff.COMPLETED
        assert final.winner_id is None
        assert stats_of(db, "chris").cumulative_xp == 500
        assert stats_of(db, "dana").cumulative_xp == 300
        assert stats_of(db, "chris").challenges_won == 0

    def test_settlement_runs_once(self, db, accepted):
        liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        liftoff.submit_weight(db, accepted, "dana", 90, now=NOW)
        with pytest.raises(InvalidStateTransition):
            liftoff.settle_challenge(db, accepted, now=NOW)
        assert stats_of(db, "chris").cumulative_xp == 700
        assert stats_of(db, "dana").cumulative_xp == 100

    def test_settle_needs_both_lifts(self, db, accepted):
        liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        with pytest.raises(InvalidStateTransition):
            liftoff.settle_challenge(db, accepted, now=NOW)

    def test_resubmission_rejected(self, db, accepted):
        liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        with pytest.raises(InvalidStateTransition):
            liftoff.submit_weight(db, accepted, "chris", 150, now=NOW)
        assert db.get(LiftOffChallenge, accepted).challenger_weight == 100

    def test_outsider_cannot_submit(self, db, accepted, make_user):
        make_user("eve", cumulative_xp=1000)
        with pytest.raises(InvalidParticipant):
            liftoff.submit_weight(db, accepted, "eve", 300, now=NOW)

    def test_submit_requires_accepted(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
        with pytest.raises(InvalidStateTransition):
            liftoff.submit_weight(db, challenge.id, "chris", 100, now=NOW)

    def test_submit_rejects_bad_weight(self, db, accepted):
        with pytest.raises(InvalidInput):
            liftoff.submit_weight(db, accepted, "chris", 0, now=NOW)

    def test_failed_settlement_rolls_back_everything(self, db, accepted):
        liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        # Loser's stats row vanishes, settlement cannot complete
        db.query(UserStats).filter(UserStats.user_id == "dana").delete()
        db.commit()
        with pytest.raises(NotFound):
            liftoff.submit_weight(db, accepted, "dana", 90, now=NOW)

        db.expire_all()
        challenge = db.get(LiftOffChallenge, accepted)
        assert challenge.status == liftoff.ACCEPTED
        assert challenge.challenged_weight is None
        assert challenge.winner_id is None
        assert stats_of(db, "chris").cumulative_xp == 500
        assert stats_of(db, "chris").challenges_won == 0

    def test_monthly_history_follows_transfer(self, db, accepted):
        liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        liftoff.submit_weight(db, accepted, "dana", 90, now=NOW)
        rows = {r.user_id: r.total_xp for r in db.query(MonthlyXP).filter(MonthlyXP.month == "2025-03")}
        assert rows == {"chris": 200, "dana": 0}


class TestExpiry:
    def test_pending_expires_on_accept(self, db, players):
        challenge = liftoff.create_challenge(db, "chris", "dana", "deadlift", 200, now=NOW)
        with pytest.raises(InvalidStateTransition):
            liftoff.accept_challenge(db, challenge.id, "dana", now=NOW + timedelta(days=8))
        db.expire_all()
        assert db.get(LiftOffChallenge, challenge.id).status == liftoff.EXPIRED

    def test_accepted_expires_on_submit(self, db, accepted):
        with pytest.raises(InvalidStateTransition):
            liftoff.submit_weight(db, accepted, "chris", 100, now=NOW + timedelta(days=7))
        db.expire_all()
        challenge = db.get(LiftOffChallenge, accepted)
        assert challenge.status == liftoff.EXPIRED
        assert challenge.challenger_weight is None

    def test_read_expires(self, db, accepted):
        challenge = liftoff.get_challenge(db, accepted, "chris", now=NOW + timedelta(days=10))
        assert challenge.status == liftoff.EXPIRED

    def test_sweep(self, db, players):
        liftoff.create_challenge(db, "chris", "dana", "deadlift", 10, now=NOW)
        liftoff.create_challenge(db, "chris", "dana", "bench", 10, now=NOW + timedelta(days=5))
        assert liftoff.expire_stale_challenges(db, now=NOW + timedelta(days=8)) == 1
        assert liftoff.expire_stale_challenges(db, now=NOW + timedelta(days=8)) == 0

    def test_terminal_states_do_not_expire(self, db, accepted):
        liftoff.submit_weight(db, accepted, "chris", 100, now=NOW)
        liftoff.submit_weight(db, accepted, "dana", 90, now=NOW)
        assert liftoff.expire_stale_challenges(db, now=NOW + timedelta(days=30)) == 0


class TestQueries:
    def test_listing(self, db, players, make_user):
        make_user("eve", cumulative_xp=1000)
        first = liftoff.create_challenge(db, "chris", "dana", "deadlift", 50, now=NOW)
        second = liftoff.create_challenge(db, "eve", "dana", "bench", 50, now=NOW + timedelta(hours=1))
        liftoff.create_challenge(db, "eve", "chris", "squat", 50, now=NOW + timedelta(hours=2))
        liftoff.accept_challenge(db, first.id, "dana", now=NOW + timedelta(hours=3))

        later = NOW + timedelta(days=1)
        assert [c.id for c in liftoff.get_user_challenges(db, "dana", now=later)] == [second.id, first.id]
        assert [c.id for c in liftoff.get_pending_challenges(db, "dana", now=later)] == [second.id]
        assert [c.id for c in liftoff.get_active_challenges(db, "dana", now=later)] == [first.id]

        liftoff.submit_weight(db, first.id, "dana", 100, now=later)
        liftoff.submit_weight(db, first.id, "chris", 120, now=later)
        assert liftoff.get_active_challenges(db, "dana", now=later) == []

    def test_get_challenge_participants_only(self, db, accepted, make_user):
        make_user("eve")
        with pytest.raises(InvalidParticipant):
            liftoff.get_challenge(db, accepted, "eve", now=NOW)
        assert liftoff.get_challenge(db, accepted, "dana", now=NOW).id == accepted
