#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Setup script for EcoVerify

This file is kept for legacy compatibility and pip editable installs.
The package configuration, version included, is in pyproject.toml.
"""

from setuptools import setup

setup()
