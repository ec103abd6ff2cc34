"""Module and console entrypoint.

- Development: python -m dynaform
- Installed:   dynaform
"""

import sys

from main import main


def __main__() -> None:
    sys.exit(main())


if __name__ == "__main__":
    __main__()
