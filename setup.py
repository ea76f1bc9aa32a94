from setuptools import setup, find_namespace_packages

setup(
    name="diagnostic_kb",
    version="0.1.0",
    packages=find_namespace_packages(include=["diagnostic_kb", "diagnostic_kb.*"]),
    package_data={"diagnostic_kb.services": ["*.yaml"]},
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy[asyncio]",
        "asyncpg",
        "python-jose[cryptography]",
        "httpx",
        "openai",
        "anthropic",
        "pyyaml",
        "python-dotenv",
        "pydantic>=2"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "aiosqlite",
        ],
        "examples": [
            "requests",
        ],
    },
)
