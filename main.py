#!/usr/bin/env python3
"""
reelsqueeze - Main Entry Point
Size-bounded adaptive video compression

Examples:
  python main.py compress clip.mov --target-size-mb 10
  python main.py thumbnail clip.mov thumb.jpg --at 5

Supports graceful shutdown with Ctrl+C (press twice to force quit).
"""

import sys
import os

# Force UTF-8 encoding for console output
if sys.platform.startswith('win'):
    # Set console code page to UTF-8 on Windows
    os.system('chcp 65001 > nul')
    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, 'reconfigure'):
            stream.reconfigure(encoding='utf-8')

from reelsqueeze.cli import main

if __name__ == '__main__':
    main()
