from setuptools import setup, find_packages

setup(
    name="academy-backend",
    version="0.1.0",
    packages=find_packages(include=["academy", "academy.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0",
        "pydantic>=2",
        "pydantic-settings>=2.7",
        "python-dotenv",
        "python-dateutil",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
