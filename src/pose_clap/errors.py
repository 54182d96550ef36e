"""Exception types raised by the pose pipeline."""


class PoseClapError(Exception):
    """Base class for pipeline errors."""


class ParseError(PoseClapError, ValueError):
    """Anchor table is missing, malformed or too short. Fatal at startup."""


class ShapeError(PoseClapError, ValueError):
    """Inference output has an unexpected element count. The frame is dropped."""


class SourceUnavailable(PoseClapError):
    """No valid input frame or source. The pipeline idles and retries."""


class ConfigError(PoseClapError, ValueError):
    """A configuration value is outside its accepted range."""
