"""
PeerLink - Module entry point for ``python -m peerlink``.
"""

import sys

from .main import main

if __name__ == "__main__":
    sys.exit(main())
