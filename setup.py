from setuptools import setup, find_packages

setup(
    name="faultsim",
    version="0.1.0",
    packages=find_packages(include=["faultsim", "faultsim.*"]),
    python_requires=">=3.12",
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic",
        "pydantic-settings",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
