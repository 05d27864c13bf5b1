#!/usr/bin/env python3
"""
Setup script for the Aeroduel mobile simulator
"""

from setuptools import setup, find_packages

setup(
    name="aeroduel-mobile-sim",
    version="0.0.1",
    description="Two simulated mobile clients exercising an Aeroduel match server",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "websockets==15.0",
        "httpx==0.28.1",
        "click==8.1.7",
        "typer==0.12.3",
        "rich==13.9.2",
        "aioconsole==0.8.1",
        "PyYAML==6.0.2",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'aerosim=mobile.sim_cli:main',
        ],
    },
)
