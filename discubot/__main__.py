"""
Package entry point for Discubot.
"""

import asyncio
import logging
import sys


def run_main():
    """Run the application until it is stopped."""
    from .main import main

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logging.getLogger(__name__).critical(f"FATAL: {type(e).__name__}: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run_main()
