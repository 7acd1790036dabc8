import sys

from .text_filter import _cli

if __name__ == "__main__":
    sys.exit(_cli())
