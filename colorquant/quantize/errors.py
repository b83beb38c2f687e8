class QuantizeError(Exception):
    """Base class for every error raised by the quantization engine."""


class ConfigurationError(QuantizeError, ValueError):
    """Rejected before any dispatch; no cluster state exists yet."""


class DispatchError(QuantizeError, RuntimeError):
    """A kernel launch or buffer allocation failed. The run is aborted."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class RunCancelled(QuantizeError):
    """The host cancel signal was observed between passes."""
