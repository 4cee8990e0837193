"""Streak and points transitions for a scored attempt."""
from dataclasses import dataclass, replace

from daily_doodle.dates import previous_date_key


@dataclass(frozen=True)
class ProgressState:
    points_total: int = 0
    streak_current: int = 0
    streak_best: int = 0
    last_win_date: str | None = None

    @classmethod
    def from_user(cls, user) -> "ProgressState":
        return cls(
            points_total=int(user.points_total or 0),
            streak_current=int(user.streak_current or 0),
            streak_best=int(user.streak_best or 0),
            last_win_date=user.last_win_date or None,
        )

    def apply_to(self, user) -> None:
        user.points_total = self.points_total
        user.streak_current = self.streak_current
        user.streak_best = self.streak_best
        user.last_win_date = self.last_win_date


def apply_result(state: ProgressState, date_key: str, is_win: bool) -> ProgressState:
    """Return the progress after an attempt on `date_key`.

    A loss leaves everything unchanged. A win extends the streak when the
    previous win was the day before `date_key`, otherwise restarts it at 1.
    """
    if not is_win:
        return state

    if state.last_win_date == previous_date_key(date_key):
        streak = state.streak_current + 1
    else:
        streak = 1

    return replace(
        state,
        points_total=state.points_total + 1,
        streak_current=streak,
        streak_best=max(state.streak_best, streak),
        last_win_date=date_key,
    )
