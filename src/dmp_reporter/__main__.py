"""
Entry point for running the reporter as a module:

    python -m dmp_reporter --settings-dir ./settings --host-config host.toml

The installed ``dmp-reporter`` command is equivalent.
"""

from .cli import cli_main

if __name__ == "__main__":
    cli_main()
