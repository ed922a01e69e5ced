#!/usr/bin/env python
"""
Setup script for SceneCast
"""

from setuptools import setup, find_packages

# Read the contents of README file
from pathlib import Path
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="scenecast",
    version="0.1.0",
    description="Rate-limited natural-language commentary for live video scenes",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="SceneCast Team",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"scenecast": ["prompts/*.txt"]},
    python_requires=">=3.9",
    install_requires=[
        "aiohttp>=3.9.0",
        "pydantic>=2.0.0",
        "rich>=13.0.0",
        "PyYAML>=6.0",
        "requests>=2.31.0",
        "numpy>=1.24.0",
        "openai>=1.0.0",
    ],
    extras_require={
        "multimedia": ["opencv-python>=4.8.0"],
        "yolo": ["ultralytics>=8.0.0", "opencv-python>=4.8.0"],
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.24.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "scenecast=scenecast.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Video",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    keywords="video, object detection, yolo, llm, commentary, rate limiting",
)
