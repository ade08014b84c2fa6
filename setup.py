#!/usr/bin/env python3
"""
setup.py compatibility wrapper for packaging tools that require it.

This project uses pyproject.toml with hatchling as the build backend.

For normal Python installation, use:
    pip install .
"""

from setuptools import setup

# Let the build read its configuration from pyproject.toml
setup()
