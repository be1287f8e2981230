from setuptools import setup, find_namespace_packages

setup(
    name="edufall",
    version="0.1",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["edufall*"]),
    install_requires=[
        "sqlalchemy[asyncio]>=2.0.0",
        "aiosqlite>=0.17.0",
        "httpx>=0.24.0",
        "python-dotenv>=0.19.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "edufall=edufall.__main__:run",
        ],
    },
    python_requires=">=3.11",
)
