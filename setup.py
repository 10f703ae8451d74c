#!/usr/bin/env python3
"""
kv-cluster-trib Setup Script
============================
Allows installation of the kv-cluster-trib package.

Usage:
    pip install -e .           # Development install
    pip install -e .[test]     # Development install with test tools
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="kv-cluster-trib",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "redis>=5.0.1,<8",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "kv-cluster-trib=trib.cli:main",
        ],
    },
)
