from setuptools import find_packages, setup

setup(
    name="vmadmin",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*", "examples", "examples.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "cryptography",
        "requests",
        "click",
        "websockets>=13",
        "coincurve>=18",
        "bech32",
    ],
    extras_require={
        "test": [
            "pytest",
            "httpx",
        ],
    },
    entry_points={
        "console_scripts": [
            "vmadmin=vmadmin.cli:cli",
        ],
    },
)
