"""Setup file for development installation."""

from setuptools import setup, find_packages

setup(
    name="persona-studio",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "httpx",
        "opentelemetry-instrumentation-fastapi",
        "prometheus-client",
        "pydantic>=2",
        "structlog",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
)
