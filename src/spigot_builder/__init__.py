"""Spigot builder.

Keeps a local Spigot server jar current by driving BuildTools, then launches
the server and relays its console to the operator.
"""

__version__ = "1.0.0"
