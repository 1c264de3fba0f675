"""Storyloom: generation orchestration and image artifact pipeline for interactive stories."""

__version__ = "0.1.0"
