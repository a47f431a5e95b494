#!/usr/bin/env python3
"""
Setup configuration for trackfetch
Build a local music library from catalog album and playlist links
"""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "spotipy>=2.22.1",
    "ytmusicapi>=1.3.2",
    "yt-dlp>=2023.12.30",
    "mutagen>=1.47.0",
    "click>=8.1.7",
    "rich-click>=1.7.0",
    "rich>=13.0.0",
    "pyyaml>=6.0.1",
    "requests>=2.31.0",
    "tqdm>=4.66.1",
    "python-dotenv>=1.0.0",
    "Pillow>=10.0.0",
    "rapidfuzz>=3.0.0",
    "Unidecode>=1.3.6",
]

setup(
    name="trackfetch",
    version="0.3.0",
    author="trackfetch Team",
    description="Acquire catalog albums and playlists into a tagged local music library",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["trackfetch", "trackfetch.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "test": [
            "pytest>=7.4.3",
        ],
        "dev": [
            "pytest>=7.4.3",
            "black>=23.11.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "trackfetch=trackfetch.cli:main",
        ],
    },
    keywords="spotify youtube music download playlist album mp3 portable cli",
)
