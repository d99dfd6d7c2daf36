from setuptools import setup, find_packages

setup(
    name="csafe-lang",
    version="0.1.0",
    description="csafe — compiler front end for the C++Safe dialect",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "llvmlite>=0.41.0",
        "z3-solver>=4.12.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "hypothesis>=6.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "csafe=csafe.cli:main",
        ],
    },
)
