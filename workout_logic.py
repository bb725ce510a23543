"""
workout_logic.py — The Interval Workout Brain
Level configs, round planner, random workout generator and the
tick-driven interval timer used by the workout player.
"""

import random
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from loguru import logger

# ─────────────────────────────────────────────
# Data Models
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class LevelConfig:
    key: str
    label: str
    work: int               # seconds of work per interval
    rest: int               # seconds of rest per interval

    @property
    def interval(self) -> int:
        return self.work + self.rest

    @property
    def desc(self) -> str:
        return f"{self.work}s work / {self.rest}s rest"


@dataclass(frozen=True)
class Exercise:
    name: str
    video_url: str = ""

    def to_dict(self):
        return asdict(self)


@dataclass
class GeneratedWorkout:
    level: LevelConfig
    duration_minutes: int
    exercises: list[Exercise] = field(default_factory=list)
    rounds: int = 2

    @property
    def total_intervals(self) -> int:
        return len(self.exercises) * self.rounds

    @property
    def total_seconds(self) -> int:
        return self.total_intervals * self.level.interval

    def exercise_names(self) -> list[str]:
        return [e.name for e in self.exercises]


class WorkoutConfigError(ValueError):
    """Raised when a level/duration/pool combination cannot produce a workout."""


class EmptyPoolError(WorkoutConfigError):
    """Raised when there are no exercises to pick from."""


# ─────────────────────────────────────────────
# Levels & Options
# ─────────────────────────────────────────────

LEVELS: dict[str, LevelConfig] = {
    "beginner": LevelConfig("beginner", "Beginner", 30, 30),
    "intermediate": LevelConfig("intermediate", "Intermediate", 40, 20),
    "advanced": LevelConfig("advanced", "Advanced", 40, 15),
}

TIME_OPTIONS = [5, 10, 15, 20, 30]
WEEKLY_TARGET = 5
MIN_ROUNDS = 2


def get_level(level_key: str) -> LevelConfig:
    try:
        return LEVELS[level_key]
    except KeyError:
        raise WorkoutConfigError(f"Unknown level: {level_key!r}") from None


def exercise_from_file(filename: str, video_url: str) -> Exercise:
    """Name an exercise after its video file, dropping any .mp4 suffix."""
    name = filename.rsplit("/", 1)[-1]
    if name.lower().endswith(".mp4"):
        name = name[:-4]
    return Exercise(name=name, video_url=video_url)


# ─────────────────────────────────────────────
# Generator Engine
# ─────────────────────────────────────────────

def plan_rounds(level: LevelConfig, duration_minutes: int) -> tuple[int, int, int]:
    """
    Work out how a duration splits into rounds.
    Returns (total_intervals, exercises_per_round, rounds).
    """
    total_intervals = (duration_minutes * 60) // level.interval
    if total_intervals < 1:
        raise WorkoutConfigError(
            f"{duration_minutes} min is too short for {level.label} intervals"
        )

    half = total_intervals // 2
    if total_intervals <= 6:
        per_round = max(3, half)
    elif total_intervals <= 12:
        per_round = min(6, half)
    else:
        per_round = min(10, half)

    # Round progress and "next round" messaging need at least two rounds
    rounds = max(MIN_ROUNDS, total_intervals // per_round)
    return total_intervals, per_round, rounds


def generate_workout(
    level_key: str,
    duration_minutes: int,
    exercise_pool: list[Exercise],
    rng: Optional[random.Random] = None,
) -> GeneratedWorkout:
    """
    Pick a random, non-repeating set of exercises and a round count that
    fills the requested duration. The same set is repeated every round.
    """
    if duration_minutes not in TIME_OPTIONS:
        raise WorkoutConfigError(f"Duration must be one of {TIME_OPTIONS} minutes")
    level = get_level(level_key)
    if not exercise_pool:
        raise EmptyPoolError("No exercises available to build a workout")

    _, per_round, rounds = plan_rounds(level, duration_minutes)

    rng = rng or random.Random()
    shuffled = list(exercise_pool)
    rng.shuffle(shuffled)
    selected = shuffled[:min(per_round, len(shuffled))]

    logger.info(
        f"[WORKOUT] Generated {level.key} {duration_minutes}min: "
        f"{len(selected)} exercises x {rounds} rounds"
    )
    return GeneratedWorkout(
        level=level,
        duration_minutes=duration_minutes,
        exercises=selected,
        rounds=rounds,
    )


# ─────────────────────────────────────────────
# Workout Log Stats
# ─────────────────────────────────────────────

def week_start(now: datetime) -> datetime:
    """Midnight on the Monday of the week containing `now`."""
    monday = now - timedelta(days=now.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def workout_counts(completed_at: list[datetime], now: datetime) -> tuple[int, int]:
    """Return (total, this_week) counts of completed workouts."""
    start = week_start(now)
    weekly = sum(1 for ts in completed_at if ts >= start)
    return len(completed_at), weekly


# ─────────────────────────────────────────────
# Interval Timer
# ─────────────────────────────────────────────

IDLE = "idle"
COUNTDOWN = "countdown"
WORK = "work"
REST = "rest"
COMPLETE = "complete"
EXITED = "exited"

CUE_TICK = "tick"
CUE_GO = "go"

COUNTDOWN_SECONDS = 3
WARNING_SECONDS = 3


class IntervalTimer:
    """
    Phase-by-phase countdown for a generated workout.

    Nothing here reads the clock: the caller invokes `tick()` once per
    elapsed second, so a paused timer simply stops receiving ticks that
    count. Audio cues go out through `on_cue("tick" | "go")`.
    """

    def __init__(
        self,
        workout: GeneratedWorkout,
        on_cue: Optional[Callable[[str], None]] = None,
        on_complete: Optional[Callable[["IntervalTimer"], None]] = None,
    ):
        if not workout.exercises:
            raise EmptyPoolError("Cannot run a workout with no exercises")
        self.workout = workout
        self.on_cue = on_cue
        self.on_complete = on_complete
        self.phase = IDLE
        self.time_left = 0
        self.round = 1
        self.exercise_index = 0
        self.paused = False

    # -- read-only views ------------------------------------------------

    @property
    def phase_duration(self) -> int:
        if self.phase == WORK:
            return self.workout.level.work
        if self.phase == REST:
            return self.workout.level.rest
        if self.phase == COUNTDOWN:
            return COUNTDOWN_SECONDS
        return 0

    @property
    def is_running(self) -> bool:
        return self.phase in (COUNTDOWN, WORK, REST) and not self.paused

    @property
    def is_finished(self) -> bool:
        return self.phase in (COMPLETE, EXITED)

    @property
    def current_exercise(self) -> Optional[Exercise]:
        """The exercise whose video should play during a work phase."""
        if self.phase in (WORK, REST):
            return self.workout.exercises[self.exercise_index]
        return None

    @property
    def up_next(self) -> Optional[Exercise]:
        """During rest: the next exercise, or None after the final interval."""
        if self.phase != REST:
            return None
        exercises = self.workout.exercises
        if self.exercise_index + 1 < len(exercises):
            return exercises[self.exercise_index + 1]
        if self.round < self.workout.rounds:
            return exercises[0]
        return None

    @property
    def progress(self) -> float:
        if self.phase == COMPLETE:
            return 1.0
        if self.phase not in (WORK, REST):
            return 0.0
        per_round = len(self.workout.exercises)
        done = (self.round - 1) * per_round + self.exercise_index
        if self.phase == REST:
            done += 0.5
        return done / (per_round * self.workout.rounds)

    # -- controls --------------------------------------------------------

    def start(self):
        self.phase = COUNTDOWN
        self.time_left = COUNTDOWN_SECONDS
        self.round = 1
        self.exercise_index = 0
        self.paused = False
        self._cue(CUE_TICK)

    def pause(self):
        if self.is_running:
            self.paused = True

    def resume(self):
        self.paused = False

    def stop(self):
        logger.info(f"[TIMER] Stopped during {self.phase} (round {self.round})")
        self.phase = EXITED
        self.time_left = 0
        self.paused = False

    def skip(self):
        """Cut the current work or rest phase short."""
        if self.phase in (WORK, REST) and not self.paused:
            self.time_left = 0
            self._advance()

    def tick(self):
        """Advance the timer by one second."""
        if self.paused or self.phase not in (COUNTDOWN, WORK, REST):
            return

        self.time_left -= 1
        if self.phase == COUNTDOWN:
            if self.time_left <= 0:
                self._enter_work()
            else:
                self._cue(CUE_TICK)
            return

        if self.time_left <= 0:
            self._advance()
        elif self.time_left <= WARNING_SECONDS:
            self._cue(CUE_TICK)

    # -- transitions -----------------------------------------------------

    def _enter_work(self):
        self.phase = WORK
        self.time_left = self.workout.level.work
        self._cue(CUE_GO)

    def _advance(self):
        if self.phase == WORK:
            self.phase = REST
            self.time_left = self.workout.level.rest
            return

        if self.exercise_index + 1 < len(self.workout.exercises):
            self.exercise_index += 1
        elif self.round < self.workout.rounds:
            self.round += 1
            self.exercise_index = 0
        else:
            self.phase = COMPLETE
            self.time_left = 0
            logger.info(
                f"[TIMER] Workout complete: {self.workout.total_intervals} intervals"
            )
            if self.on_complete:
                self.on_complete(self)
            return
        self._enter_work()

    def _cue(self, cue: str):
        if self.on_cue:
            self.on_cue(cue)
