# oncall/core/errors.py
"""
Error taxonomy for the on-call service.

- ConfigurationError: one layer is unusable (empty members, bad window,
  occurrence search exhausted). The layer is skipped, the process keeps going.
- SourceUnavailable: schedule or override input missing/corrupt. Sources keep
  serving the last good value.
- DispatchFailure: the notification sink rejected a message or timed out.
  Reported, never retried by the scheduler.
- LedgerWriteConflict: duplicate historical insert. Treated as success by the
  ledger and never surfaced to callers.
"""


class OnCallError(Exception):
    """Base class for all on-call service errors."""

    pass


class ConfigurationError(OnCallError):
    """A schedule layer is misconfigured."""

    def __init__(self, message: str, layer_key: str | None = None):
        super().__init__(message)
        self.layer_key = layer_key


class SourceUnavailable(OnCallError):
    """Schedule or override input could not be loaded."""

    pass


class DispatchFailure(OnCallError):
    """The notification sink rejected or timed out on a shift transition."""

    pass


class LedgerWriteConflict(OnCallError):
    """A historical assignment already exists for the (date, layer) pair."""

    pass
