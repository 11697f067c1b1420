"""Setup configuration for the ARGO clinical migrator package."""

from setuptools import setup, find_packages

setup(
    name="argo-clinical-migrator",
    version="1.0.0",
    description="Clinical donor submission validation and data dictionary migrations",
    author="Alex",
    author_email="",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "duckdb>=1.0.0",
        "requests>=2.31.0",
        "python-dotenv>=1.0.0",
        "pyyaml>=6.0",
        "tqdm>=4.66.0",
        "tenacity>=8.2.0",
    ],
    extras_require={
        "dev": [
            "pytest>=8.0.0",
            "pytest-cov>=4.1.0",
            "black>=24.1.0",
            "ruff>=0.2.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "clinical-migrate=argo_clinical.cli:main",
        ],
    },
)
