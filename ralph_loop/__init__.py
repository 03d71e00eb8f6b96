"""Ralph - autonomous development loop driving a non-interactive coding agent."""

__version__ = "1.0.0"
