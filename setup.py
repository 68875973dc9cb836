from setuptools import setup, find_namespace_packages

setup(
    name="bpack",
    version="0.1.0",
    packages=find_namespace_packages(where="src", include=["bpack*"]),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "tenacity>=8.0",
        "semver>=3.0",
        "tomli-w>=1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bpack=bpack.CLI.main:main",
        ],
    },
)
