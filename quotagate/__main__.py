"""Main entry point when executing quotagate as a package.

This allows running the package using python -m quotagate.
"""

from quotagate.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
