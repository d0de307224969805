"""Persona chat: a single-user web chat relaying turns to a generative-language API."""

__version__ = "1.0.0"
