"""Entry point for `python -m kubenetviz`.

Usage:
    python -m kubenetviz
"""

from __future__ import annotations

import asyncio

from kubenetviz.app import main

asyncio.run(main())
