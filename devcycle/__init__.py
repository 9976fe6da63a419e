"""Building blocks for a server-side DevCycle client: config polling, event flushing, API transport, variable typing and logging."""

__version__ = "2.10.4"