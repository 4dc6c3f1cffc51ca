"""Dockerizer - stack detection and Dockerfile generation.

The agent drives an AI generator through a generate/write/build/test loop,
executing every proposed action through a sandboxed tool dispatcher.
"""

__version__ = "0.1.0"
