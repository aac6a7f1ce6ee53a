#!/usr/bin/env python3
"""
Setup script for the Substrate node handshake client
"""

from setuptools import setup, find_namespace_packages

setup(
    name="substrate-handshake",
    version="0.0.1",
    description="Authenticate against a Substrate node over WebSocket and query its identity",
    packages=find_namespace_packages(include=["shared", "shared.*", "nodeclient", "nodeclient.*"]),
    install_requires=[
        "websockets==15.0",
        "click==8.1.7",
        "typer==0.12.3",
        "rich==13.9.2",
        "PyYAML==6.0.2",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
        ],
    },
    python_requires=">=3.9",
    entry_points={
        'console_scripts': [
            'substrate-handshake=nodeclient.cli:app',
        ],
    },
)
