"""HTTP to cTrader Open API order bridge.

Exchanges an OAuth refresh token for access tokens, keeps one authenticated
WebSocket session to the cTrader Open API gateway and relays HTTP order
requests onto it.
"""

from pathlib import Path

from setuptools import find_packages, setup

setup(
    name="ctbridge",
    packages=find_packages(include=["ctbridge"]),
    version="0.1.0",
    description="HTTP to cTrader Open API order bridge",
    long_description=Path("README.md").read_text(encoding="utf-8"),
    long_description_content_type="text/markdown",
    license="MIT",
    python_requires=">=3.12",
    install_requires=[
        "pydantic>=2.10.0",
        "pydantic-settings>=2.6.0",
        "structlog>=25.5.0",
        "orjson>=3.10.0",
        "httpx>=0.27.0",
        "websockets>=13.0",
        "fastapi>=0.115.0",
        "uvicorn>=0.30.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.24.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "ctbridge=ctbridge.__main__:main",
        ],
    },
    test_suite="tests",
)
