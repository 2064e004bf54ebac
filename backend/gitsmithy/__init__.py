"""gitsmithy - browse local git repositories and serve them over Smart HTTP."""

__version__ = "0.1.0"
