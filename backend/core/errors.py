"""Exception taxonomy for the signal engine and backtester."""


class SignalEngineError(Exception):
    """Base exception for signal engine errors"""
    pass


class InsufficientDataError(SignalEngineError):
    """Not enough candles to run a meaningful backtest."""

    def __init__(self, required: int, actual: int):
        self.required = required
        self.actual = actual
        super().__init__(
            f"Insufficient data: {actual} candles available, {required} required"
        )


class InvalidConfigError(SignalEngineError):
    """Configuration values out of bounds."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid configuration: " + "; ".join(problems))


class DegenerateArithmeticError(SignalEngineError):
    """Raised internally when a computation produces NaN or infinity.

    Never escapes the component that raises it; callers convert it into
    a neutral value.
    """
    pass
