"""
DMS setup.py — Package configuration and CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="dms-core",
    version="1.0.0",
    description="DMS — Document management core",
    packages=find_packages(include=["dms", "dms.*"]),
    python_requires=">=3.11",
    entry_points={
        "console_scripts": [
            "dms=dms.cli:main",
        ],
    },
    install_requires=[
        "sqlalchemy>=2.0",
        "pydantic>=2.5",
        "pyyaml>=6.0",
    ],
    extras_require={
        "postgres": ["psycopg2-binary>=2.9"],
        "test": ["pytest>=8.0"],
    },
)
