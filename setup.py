"""Setup file for development installation."""

from setuptools import setup, find_packages

setup(
    name="flexai-coach-chat",
    version="0.1.0",
    description="Conversation store and streaming reply engine for the FlexAI coach",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0",
        "structlog",
        "fastapi",
        "google-generativeai",
        "google-api-core",
        "prometheus-client",
        "opentelemetry-instrumentation-fastapi",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
