"""
Command-line interface wrapper for the DMP server list reporter.

Referenced in pyproject.toml as the ``dmp-reporter`` console script. It
delegates to reporter.main(), which handles argument parsing and runs the
reporter until interrupted.
"""

import sys

from .config import ConfigurationError
from .reporter import main


def cli_main() -> None:
    try:
        main()
    except KeyboardInterrupt:
        print("\nReporter interrupted by user")
        sys.exit(0)
    except SystemExit:
        raise
    except ConfigurationError as e:
        print("Error: invalid reporter settings:", file=sys.stderr)
        for error in e.errors:
            print(f"  - {error}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli_main()
