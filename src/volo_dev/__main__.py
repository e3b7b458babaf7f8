"""Allow ``python -m volo_dev``."""

from volo_dev.cli import main

if __name__ == "__main__":
    main()
