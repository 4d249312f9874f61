"""
MAILDECK - Command Line Interface

Main CLI entry point for the campaign server.
"""
from cli.main import app, main

__all__ = ["app", "main"]
