"""Setup configuration for sshpool."""

from setuptools import setup, find_packages

setup(
    name="sshpool",
    version="1.0.0",
    description="Bounded-concurrency SSH command scheduler with timeouts and retries",
    author="Your Name",
    packages=find_packages(),
    install_requires=[
        "click>=8.1.7",
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "paramiko>=3.4.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "sshpool=sshpool.cli:cli",
        ],
    },
    python_requires=">=3.8",
)
