"""Websocket bridge between chat clients and terminal sessions.

Holds the broadcast hub, the protocol handler and the FastAPI
application that serves them.
"""
