"""Run a coding agent in a bounded loop against an isolated git worktree."""

__version__ = "0.1.0"
