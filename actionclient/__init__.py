"""actionclient - send action/message requests over length-prefixed TCP frames."""

__version__ = "0.1.0"
