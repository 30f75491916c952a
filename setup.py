# curve_sale/setup.py
from setuptools import setup, find_packages

setup(
    name="curve_sale",
    version="0.1.0",
    packages=find_packages(include=["curve_sale", "curve_sale.*"]),
    install_requires=[
        "msgpack",             # checkpoints and ids
        "PyNaCl",              # ed25519 capabilities
        "pycryptodome",        # keccak addresses
        "psutil",              # monitoring
        "prometheus_client",   # monitoring
    ],
    extras_require={
        "test": ["pytest"],
    },
)
