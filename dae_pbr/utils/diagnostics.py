"""Diagnostic records emitted while converting a scene.

Conversion never raises for malformed input; it degrades the output and
reports what it dropped through a sink. The default sink forwards every
record to the ``dae_pbr`` logger, so a caller that configures logging sees
the same messages without wiring anything up.

Sinks are plain objects with an ``emit(diagnostic)`` method:
- LoggingSink: forwards to the standard logging module
- CollectingSink: keeps the records in memory (tests, batch tools)
- NullSink: drops everything
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


_log = logging.getLogger("dae_pbr")

# Verbose structural dumps, activate with DAE_PBR_DEBUG=1 environment variable
DEBUG_ENV_VAR = "DAE_PBR_DEBUG"


def debug_dump_enabled() -> bool:
    """Whether the structural scene dump was requested via the environment."""
    return os.environ.get(DEBUG_ENV_VAR, '') == '1'


@dataclass(frozen=True)
class Diagnostic:
    """A single degradation or informational event."""

    code: str
    message: str
    level: int = logging.WARNING
    context: Dict[str, object] = field(default_factory=dict)


class LoggingSink:
    """Forward diagnostics to a logger (``dae_pbr`` by default)."""

    def __init__(self, logger=None):
        self.logger = logger if logger is not None else _log

    def emit(self, diagnostic):
        if diagnostic.context:
            details = ", ".join(
                f"{key}={value!r}" for key, value in diagnostic.context.items()
            )
            self.logger.log(diagnostic.level, "[%s] %s (%s)",
                            diagnostic.code, diagnostic.message, details)
        else:
            self.logger.log(diagnostic.level, "[%s] %s",
                            diagnostic.code, diagnostic.message)


class CollectingSink:
    """Keep every diagnostic in emission order."""

    def __init__(self):
        self.records: List[Diagnostic] = []

    def emit(self, diagnostic):
        self.records.append(diagnostic)

    @property
    def codes(self):
        return [d.code for d in self.records]

    def by_code(self, code):
        return [d for d in self.records if d.code == code]

    def clear(self):
        self.records.clear()


class NullSink:
    def emit(self, diagnostic):
        pass


_default_sink = LoggingSink()


def report(sink: Optional[object], code: str, message: str,
           level: int = logging.WARNING, **context) -> None:
    """Build a Diagnostic and hand it to ``sink`` (or the logging sink)."""
    if sink is None:
        sink = _default_sink
    sink.emit(Diagnostic(code=code, message=message, level=level,
                         context=context))
