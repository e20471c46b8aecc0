#!/usr/bin/env python
"""Setup script for the Cloud Natural Language client.

This file is for backward compatibility. All configuration is in pyproject.toml.
"""

from setuptools import setup

# All configuration is in pyproject.toml
setup()
