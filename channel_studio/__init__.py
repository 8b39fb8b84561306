"""Channel Studio - build integration channels as flow graphs and deploy them to a remote engine."""

__version__ = "1.0.0"
