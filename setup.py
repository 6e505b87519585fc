from setuptools import setup, find_packages

setup(
    name="http-test-server",
    version="0.1.0",
    packages=find_packages(include=["http_test_server", "http_test_server.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "h11>=0.14",
        "pydantic>=2.5",
        "pydantic-settings>=2.3",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.27",
        ],
    },
    entry_points={
        "console_scripts": [
            "http-test-server=http_test_server.app.cli:main",
        ],
    },
)
