# setup.py
from setuptools import setup, find_packages

setup(
    name="a11y_scout",
    version="0.1.0",
    description="Asynchronous accessibility crawler with a durable scan queue",
    packages=find_packages(include=["a11y_scout", "a11y_scout.*"]),
    install_requires=[
        "aiohttp>=3.9",
        "aiosqlite>=0.19",
        "beautifulsoup4>=4.12",
        "click>=8.1",
        "pydantic>=2.5",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "a11y-scout=a11y_scout.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
