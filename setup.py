"""
GED setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="ged",
    version="1.0.0",
    description="GED — Document, folder and mail management core",
    packages=find_packages(include=["ged", "ged.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "ged=ged.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "psycopg2-binary>=2.9",
        "pydantic>=2.5",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
