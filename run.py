from __future__ import annotations

from live_composite.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
