#!/usr/bin/env python3
"""
ddlimits - Exclusion limits for dark matter direct detection

Convenience entry point. Equivalent to: python -m ddlimits
"""

from ddlimits.__main__ import main

if __name__ == "__main__":
    main()
