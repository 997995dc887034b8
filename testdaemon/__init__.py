"""testdaemon: a controllable test subject for process supervisors."""

__version__ = "0.1.0"
