"""termbridge -- terminal session bridge for chat-style web clients.

Runs a local websocket service that owns named pseudo-terminal sessions,
streams their output to every connected client, and reports when a
submitted command has gone quiet, classifying its output as success or
failure.
"""

__version__ = "0.1.0"
