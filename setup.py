# setup.py
from setuptools import setup, find_packages

setup(
    name="reflection_token",
    version="0.1.0",
    packages=find_packages(),
    install_requires=[
        "msgpack",             # state snapshots
        "cryptography",        # account keys
        "pycryptodome",        # keccak
        "prometheus_client",   # monitoring
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "reflection-genesis=reflection_token.genesis_tool:main",
        ],
    },
)
