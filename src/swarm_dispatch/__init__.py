"""swarm-dispatch - plan lifecycle, swarm dispatch, and tool-call policy guards."""

__version__ = "0.1.0"
