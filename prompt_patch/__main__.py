#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Entry point for ``python -m prompt_patch``; delegates to :func:`prompt_patch.cli.main`.
"""
from __future__ import annotations

import sys

from prompt_patch.cli import main

if __name__ == "__main__":
    sys.exit(main())
