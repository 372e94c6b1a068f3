#!/usr/bin/env python3
"""
Setup script for merlinreader - Merlin pixel detector acquisition decoder.
"""

from setuptools import setup, find_packages
import os

# Read the README file for long description
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return "Merlin pixel detector acquisition decoder"

setup(
    name="merlinreader",
    version="0.1.0",
    description="Merlin pixel detector acquisition decoder",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    author="",
    author_email="",
    packages=find_packages(include=["merlinreader", "merlinreader.*"]),
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.19.0",
        "tqdm>=4.0",
        "toml>=0.10; python_version<'3.11'",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=2.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "merlinreader=merlinreader.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Physics",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    keywords="merlin medipix timepix 4d-stem electron microscopy detector mib",
    include_package_data=True,
    zip_safe=False,
)
