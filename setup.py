#!/usr/bin/env python3
"""
Setup configuration for playlist-notes
Playlist notes and tags, synced across devices
"""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "spotipy>=2.22.1",
    "click>=8.1.7",
    "rich-click>=1.7.0",
    "pyyaml>=6.0.1",
    "requests>=2.31.0",
    "tqdm>=4.66.1",
    "python-dotenv>=1.0.0",
]

setup(
    name="playlist-notes",
    version="0.1.0",
    author="playlist-notes",
    description="Annotate playlists with timestamped notes and tags, synced across anonymous devices",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["playlist_notes", "playlist_notes.*"]),
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
        "dev": [
            "pytest>=7.4.3",
        ],
    },
    entry_points={
        "console_scripts": [
            "pnotes=playlist_notes.cli:main",
        ],
    },
    keywords="spotify playlist notes tags sync cli",
)
