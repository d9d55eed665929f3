"""Reactor - isolated AI CLI containers with a hot-reload development loop."""

__version__ = "0.4.0"
