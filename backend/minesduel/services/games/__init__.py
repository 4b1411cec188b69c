"""Game domain services: board engine, layout sync and the session store.

This package contains the game mechanics imported by the socket handlers and
HTTP routes, keeping transport concerns separated from rooms and boards.
"""
