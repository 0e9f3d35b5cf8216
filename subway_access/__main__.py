import sys

from subway_access.pipeline import main

if __name__ == "__main__":
    sys.exit(main())
