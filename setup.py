"""Live resize of filesystems and the storage stack below them."""

from codecs import open
from os import path

from setuptools import setup

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file
with open(path.join(here, "README.rst"), encoding="utf-8") as f:
    long_description = f.read()

test_deps = [
    "pytest>=3",
    "pytest-structlog",
    "pytest-cov",
]

setup(
    name="embiggen-disk",
    version="1.0",
    description=__doc__,
    long_description=long_description,
    long_description_content_type="text/x-rst",
    license="Apache-2.0",
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Environment :: Console",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3.10",
        "Topic :: System :: Filesystems",
        "Topic :: System :: Systems Administration",
    ],
    python_requires=">=3.10",
    packages=[
        "embiggen",
        "embiggen.util",
    ],
    install_requires=[
        "colorama",
        "rich",
        "structlog>=21.5",
        "typer",
    ],
    zip_safe=False,
    extras_require={
        "test": test_deps,
        "journal": ["systemd-python"],
    },
    entry_points={
        "console_scripts": [
            "embiggen-disk=embiggen.cli:app",
        ],
    },
)
