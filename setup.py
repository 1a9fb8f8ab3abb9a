from setuptools import setup, find_packages

setup(
    name="traceur",
    version="0.1.0",
    description="Perfetto recording controller: config synthesis, daemon supervision and trace recovery",
    author="",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "rich>=12.5.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "protobuf>=4.21.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "traceur=traceur.main:main",
        ],
    },
)
