"""Driver settlement engine: job pay, obligation recovery and net payable."""

__version__ = "0.1.0"
