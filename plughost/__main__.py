"""
Entry point for running plughost as a module: python -m plughost
"""

from plughost.cli.commands import app

if __name__ == "__main__":
    app()
