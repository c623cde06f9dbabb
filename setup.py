"""Build peerlink package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="peerlink",
    version="0.1.0",
    description="WebRTC data channel orchestration between peers via a relay",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
    install_requires=[
        "aiortc>=1.6.0",
        "pydantic>=2",
        "tomli ; python_version<'3.11'",
        "tomli-w",
        "typing-extensions ; python_version<'3.11'",
        "websockets>=13.0",
    ],
    extras_require={
        "dev": [
            "pyee",
            "pytest",
            "pytest-asyncio>=0.23",
        ],
    },
)
