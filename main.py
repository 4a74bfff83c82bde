"""
Asset Baker
Main entry point for the application

Bakes the source asset tree into a runtime bundle. See ``--help``.
"""

from assetbake.bake.cli import main


if __name__ == '__main__':
    raise SystemExit(main())
