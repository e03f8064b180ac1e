#!/usr/bin/env python
import os

from setuptools import find_packages, setup

# Allow overriding the package name via $PACKAGE_NAME
PACKAGE_NAME = os.environ.get("PACKAGE_NAME", "rsconnect_deploy")

with open("README.md", encoding="utf-8") as f:
    long_description = f.read()

version = {}
with open(os.path.join("rsconnect_deploy", "version.py"), encoding="utf-8") as f:
    exec(f.read(), version)

setup(
    # -- identity --
    name=PACKAGE_NAME,
    version=version["version"],

    # -- metadata --
    description="Publish an application bundle to Posit Connect from the command line",
    long_description=long_description,
    long_description_content_type="text/markdown",
    python_requires=">=3.8",

    # -- packages & typing stub --
    packages=find_packages(include=["rsconnect_deploy", "rsconnect_deploy.*"]),
    include_package_data=True,
    package_data={"rsconnect_deploy": ["py.typed"]},

    # -- runtime dependencies --
    install_requires=[
        "typing-extensions>=4.8.0",
        "click>=8.0.0",
    ],

    # -- extras --
    extras_require={
        "test": [
            "black==24.3.0",
            "coverage",
            "flake8-pyproject",
            "flake8",
            "httpretty",
            "pyright",
            "pytest-cov",
            "pytest",
        ],
    },

    # -- console script entrypoint --
    entry_points={
        "console_scripts": [
            "rsconnect-deploy=rsconnect_deploy.main:cli",
        ],
    },

    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],

    zip_safe=False,
)
