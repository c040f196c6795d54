"""Retrieval-and-reasoning core of a document chat assistant."""

VERSION = "0.1.0"
