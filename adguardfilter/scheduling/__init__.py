from adguardfilter.scheduling.timer import Timer, TimerNotFoundError, TimerRegistry, TimerValidationError

__all__ = ["Timer", "TimerRegistry", "TimerNotFoundError", "TimerValidationError"]
