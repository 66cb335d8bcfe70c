"""Folds judged submissions and daily activity into a learner profile."""

from dataclasses import dataclass
from datetime import date, timedelta

from academy.models.content import Challenge, Difficulty
from academy.models.gamification import LearnerProfile
from academy.models.submission import Submission, SubmissionStatus


SOLVED_COUNTERS = {
    Difficulty.EASY.value: "easy_solved",
    Difficulty.MEDIUM.value: "medium_solved",
    Difficulty.HARD.value: "hard_solved",
}


@dataclass(frozen=True)
class SubmissionOutcome:
    accepted: bool
    first_solve: bool
    xp_to_award: int


@dataclass(frozen=True)
class StreakUpdate:
    current_streak: int
    longest_streak: int
    extended: bool


def record_submission(
    profile: LearnerProfile,
    submission: Submission,
    challenge: Challenge,
    already_solved: bool,
) -> SubmissionOutcome:
    """Count the submission on the profile.

    Every verdict counts toward ``total_submissions``. An accepted verdict
    bumps ``accepted_submissions``; the difficulty counter and the XP
    reward apply only to the learner's first acceptance of the challenge.
    The caller awards ``xp_to_award`` through the XP engine.
    """
    profile.total_submissions += 1

    if submission.status != SubmissionStatus.ACCEPTED.value:
        return SubmissionOutcome(accepted=False, first_solve=False, xp_to_award=0)

    profile.accepted_submissions += 1
    if already_solved:
        return SubmissionOutcome(accepted=True, first_solve=False, xp_to_award=0)

    counter = SOLVED_COUNTERS.get(challenge.difficulty)
    if counter is None:
        raise ValueError(f"unknown difficulty {challenge.difficulty!r} on challenge {challenge.id}")
    setattr(profile, counter, getattr(profile, counter) + 1)
    return SubmissionOutcome(accepted=True, first_solve=True, xp_to_award=challenge.xp_reward or 0)


def update_streak(profile: LearnerProfile, activity_date: date) -> StreakUpdate:
    """Apply one qualifying activity on ``activity_date``.

    Next calendar day extends the streak, the same day changes nothing and
    a gap of two or more days restarts it at 1. Activity dated before the
    last active day is late and leaves the streak alone.
    """
    last = profile.last_active_date
    extended = False

    if last is None:
        profile.current_streak = 1
    elif activity_date == last:
        pass
    elif activity_date == last + timedelta(days=1):
        profile.current_streak += 1
        extended = True
    elif activity_date > last:
        profile.current_streak = 1

    if last is None or activity_date >= last:
        profile.last_active_date = activity_date

    profile.longest_streak = max(profile.longest_streak, profile.current_streak)
    return StreakUpdate(
        current_streak=profile.current_streak,
        longest_streak=profile.longest_streak,
        extended=extended,
    )


def acceptance_rate(accepted: int, total: int) -> float:
    if not total:
        return 0.0
    return accepted / total
