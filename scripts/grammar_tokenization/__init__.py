"""Scope checks for TextMate embedded-language grammars."""
