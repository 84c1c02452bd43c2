"""Turn a repository into an AI-assistant rules file with a large language model."""

__version__ = "0.3.0"
