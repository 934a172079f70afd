"""Entry point for python -m crmflow execution.

This module enables running crmflow as a module:
    python -m crmflow --help
    python -m crmflow process "Acme approved the budget"
"""

from crmflow.cli import app

if __name__ == "__main__":
    app()
