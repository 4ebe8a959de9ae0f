"""
Setup script for GPU Job Orchestrator

Lifecycle orchestration for compute jobs on remote GPU instances: provisioning,
timer-driven progression, real-time lifecycle events and restart recovery.
"""

from setuptools import setup, find_packages
import pathlib

here = pathlib.Path(__file__).parent.resolve()

# Get the long description from the README file
try:
    long_description = (here / "README.md").read_text(encoding="utf-8")
except FileNotFoundError:
    long_description = """
    GPU Job Orchestrator

    Provisions a remote GPU instance for every submitted job, drives the job
    through its lifecycle on per-job timers, publishes each state change to
    subscribers and resumes in-flight jobs after a restart.
    """

setup(
    name="gpu-job-orchestrator",
    version="1.0.0",
    description="Lifecycle orchestration for compute jobs on remote GPU instances",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="GPU Job Orchestrator Team",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Distributed Computing",
        "Topic :: System :: Systems Administration",
    ],
    keywords="gpu, job orchestration, provisioning, lifecycle, async",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        # Core dependencies
        "asyncpg>=0.27.0",
        "click>=8.0.0",

        # Configuration
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "black>=22.0.0",
            "isort>=5.10.0",
            "mypy>=1.0.0",
            "coverage>=6.0.0",
            "flake8>=5.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "gpu-job-orchestrator=gpu_job_orchestrator.cli.main:main",
            "gjo=gpu_job_orchestrator.cli.main:main",
        ],
    },
    include_package_data=True,
)
