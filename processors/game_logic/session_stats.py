import time

from pydantic import BaseModel, Field

from processors.challenge import GradedResult, GradingSource


class SessionStats(BaseModel):
    """Running tallies for one practice session."""

    total_challenges: int
    correct_answers: int = 0
    total_answers: int = 0
    points_earned: int = 0
    retries: int = 0
    current_streak: int = 0
    best_streak: int = 0
    fallback_graded: int = 0
    started_at: float = Field(default_factory=time.monotonic)
    finished_at: float | None = None

    @property
    def accuracy(self) -> int:
        if not self.total_answers:
            return 0
        return round(self.correct_answers / self.total_answers * 100)

    @property
    def time_spent(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def progress_percentage(self, current_index: int) -> int:
        if not self.total_challenges:
            return 0
        return round(min(current_index, self.total_challenges) / self.total_challenges * 100)

    def record(self, result: GradedResult, credited_points: int) -> None:
        self.total_answers += 1
        self.points_earned += credited_points
        if result.grading is GradingSource.FALLBACK:
            self.fallback_graded += 1
        if result.correct:
            self.correct_answers += 1
            self.current_streak += 1
            self.best_streak = max(self.best_streak, self.current_streak)
        else:
            self.current_streak = 0

    def record_retry(self) -> None:
        self.retries += 1

    def finish(self) -> None:
        if self.finished_at is None:
            self.finished_at = time.monotonic()

    def summary(self, current_index: int) -> dict:
        return {
            "correct_answers": self.correct_answers,
            "total_answers": self.total_answers,
            "total_challenges": self.total_challenges,
            "points_earned": self.points_earned,
            "accuracy": self.accuracy,
            "progress_percentage": self.progress_percentage(current_index),
            "retries": self.retries,
            "current_streak": self.current_streak,
            "best_streak": self.best_streak,
            "fallback_graded": self.fallback_graded,
            "time_spent": round(self.time_spent, 3),
        }
