#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from setuptools import setup, find_packages

setup(
    name="vyper_helper",
    version="0.1.0",
    description="Incremental multi-version build helper for Vyper contracts",
    author="Max Qian",
    author_email="lightapt@example.com",
    packages=find_packages(include=["vyper_helper", "vyper_helper.*"]),
    python_requires=">=3.11",
    install_requires=[
        "loguru>=0.5.0",
        "pydantic>=2.0",
        "aiofiles>=23.0",
        "packaging>=22.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-mock>=3.10.0",
            "black>=21.5b2",
            "mypy>=0.812",
        ],
    },
    entry_points={
        "console_scripts": [
            "vyper-helper=vyper_helper.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Build Tools",
    ],
)
