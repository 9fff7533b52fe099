"""Adlex: dictionary-driven screening of advertising copy for regulated claims."""

__version__ = "0.1.0"
