"""Setup script for the MoneyUnify gateway."""

from setuptools import setup, find_packages

setup(
    name="moneyunify-gateway",
    version="1.0.0",
    description="MoneyUnify mobile money gateway with pending-payment reconciliation",
    author="ML Roadmap Bootcamp",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
            "aiosqlite>=0.19.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "moneyunify-api=moneyunify_gateway.api.main:main",
            "moneyunify-sweep=moneyunify_gateway.workers.sweep_worker:main",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Office/Business :: Financial",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
