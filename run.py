#!/usr/bin/env python3
"""
Simple launcher script for the volume bundler.
"""
import asyncio
import sys

from volume_bundler.main import build_parser, main

if __name__ == '__main__':
    args = build_parser().parse_args()

    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        print("\nBundler stopped by user")
        sys.exit(0)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
