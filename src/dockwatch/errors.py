"""
Exception hierarchy for dockwatch.

Errors fall in two groups: failures talking to the docker daemon (everything
under GatewayError) and failures decided locally (ActionRejected,
FatalInitError). Workers and the dispatcher catch GatewayError per call and
turn it into store updates; only FatalInitError ends the process.
"""


class DockwatchError(Exception):
    """Base class for all dockwatch errors."""


class GatewayError(DockwatchError):
    """A call to the runtime gateway failed."""


class TransientGatewayError(GatewayError):
    """Daemon temporarily unreachable or timed out; retried by the next poll."""


class ActionFailed(GatewayError):
    """The daemon rejected an issued lifecycle command."""


class StreamClosed(GatewayError):
    """A log or stats stream ended unexpectedly."""


class ActionRejected(DockwatchError):
    """Action invalid for the container's status, or confirmation missing."""


class FatalInitError(DockwatchError):
    """Daemon or terminal could not be initialised at startup."""
