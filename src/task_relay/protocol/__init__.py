"""Compact command protocol: shorthand tokens, parser and interpreter."""
