from setuptools import setup, find_packages

setup(
    name="forum-search",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "psycopg2-binary>=2.9.0",
        "redis>=5.0.0",
        "tenacity",
        "fastapi>=0.110.0",
        "slowapi>=0.1.9",
        "uvicorn>=0.27.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "fakeredis>=2.20.0",
            "httpx>=0.27.0",
        ],
    },
)
