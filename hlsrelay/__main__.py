"""Allow running with ``python -m hlsrelay``."""

from hlsrelay.main import main

main()
