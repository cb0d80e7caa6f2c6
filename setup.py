#!/usr/bin/env python
from setuptools import (
    find_packages,
    setup,
)

description = "peerdrop: direct peer-to-peer file transfer over WebRTC data channels"

extras_require = {
    "dev": [
        "build>=0.9.0",
        "mypy==1.10.0",
        "pre-commit>=3.4.0",
        "tox>=4.0.0",
        "twine",
        "wheel",
    ],
    "test": [
        "pytest>=7.0.0",
        "pytest-xdist>=2.4.0",
        "pytest-trio>=0.5.2",
    ],
}

extras_require["dev"] = extras_require["dev"] + extras_require["test"]

try:
    with open("./README.md", encoding="utf-8") as readme:
        long_description = readme.read()
except FileNotFoundError:
    long_description = description

install_requires = [
    "aioice>=0.9.0",
    "aiortc>=1.9.0",
    "base58>=1.0.3",
    "trio-asyncio>=0.15.0",
    "trio-websocket>=0.11.1",
    "trio>=0.26.0",
]

setup(
    name="peerdrop",
    version="0.1.0",
    description=description,
    long_description=long_description,
    long_description_content_type="text/markdown",
    include_package_data=True,
    install_requires=install_requires,
    python_requires=">=3.10, <4",
    extras_require=extras_require,
    zip_safe=False,
    keywords="webrtc p2p file-transfer",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Natural Language :: English",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    platforms=["unix", "linux", "osx", "win32"],
    entry_points={
        "console_scripts": [
            "peerdrop-relay=peerdrop.cli:relay_main",
            "peerdrop-receive=peerdrop.cli:receive_main",
            "peerdrop-send=peerdrop.cli:send_main",
        ],
    },
)
