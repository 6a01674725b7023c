"""Build peerlink package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="peerlink",
    version="0.1.0",
    author="Greg Pauloski",
    author_email="jgpauloski@uchicago.edu",
    description="Named peer identities and WebRTC data channels via a relay",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    url="https://github.com/gpauloski/peerlink",
    packages=setuptools.find_packages(exclude=["tests*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "aiortc>=1.9.0",
        "click",
        "cryptography>=39.0.1",
        "pydantic>=2",
        "tomli ; python_version<'3.11'",
        "tomli-w",
        "typing-extensions>=4.3.0",
        "websockets>=13",
    ],
    extras_require={
        "dev": [
            "pyee",
            "pytest",
            "pytest-asyncio>=0.23.0",
            "pytest-timeout",
            "uvloop ; sys_platform!='win32'",
        ],
    },
    entry_points={
        "console_scripts": [
            "peerlink=peerlink.cli:cli",
            "peerlink-relay=peerlink.p2p.relay.run:cli",
        ],
    },
)
