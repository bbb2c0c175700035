"""
Codebox - Code-Execution Sandbox Service

Setup script for installation.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README
readme_path = Path(__file__).parent / "README.md"
long_description = ""
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")

setup(
    name="codebox",
    version="0.1.0",
    author="Codebox Contributors",
    description="Codebox - sandboxed code execution with sessions, resource limits and artifacts",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "codebox/src"},
    packages=find_packages(where="codebox/src", exclude=["tests*", "*.tests", "*.tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Security",
        "Topic :: Software Development :: Interpreters",
    ],
    python_requires=">=3.10",
    install_requires=[
        "sqlalchemy>=2.0.0",
        "structlog>=23.1.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "click>=8.1.0",
        "requests>=2.31.0",
    ],
    extras_require={
        "postgres": [
            "psycopg2-binary>=2.9.0",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.25.0",
            "black>=23.0.0",
            "mypy>=1.6.0",
            "ruff>=0.1.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "codebox-server=codebox.api.server:run_server",
            "codebox-cli=codebox.cli.main:main",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
