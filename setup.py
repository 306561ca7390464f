#!/usr/bin/env python3
"""Setup script for IdeaCanvas."""

from setuptools import setup, find_packages


setup(
    name="ideacanvas",
    version="1.0.0",
    description="An infinite pan/zoom canvas for brainstorming idea nodes with generative help",
    author="IdeaCanvas Project",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "PyGObject>=3.50.0",
        "pycairo>=1.25.0",
        "openai>=1.40.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ideacanvas=ideacanvas.launcher:main",
        ],
        "gui_scripts": [
            "ideacanvas-gui=ideacanvas.launcher:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: X11 Applications :: GTK",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business",
    ],
)
