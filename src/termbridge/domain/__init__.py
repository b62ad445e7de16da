"""Domain models for termbridge.

Pydantic models shared by the terminal, bridge and capture modules.
"""
