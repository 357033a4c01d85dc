# -*- coding: utf-8 -*-

# system imports
from setuptools import setup, find_packages  # type: ignore


# proceed with actual install
install_requires = [
    "click>=8.0.0",
    "fasteners>=0.15",
    "keyring>=22,<24",
    "keyrings.alt>=3.1.0",
    "packaging",
    "pathspec>=0.9.0",
    "requests>=2.16.2",
    "rich>=10.0",
    "typing_extensions>=4.0",
    "watchdog>=2.0.1",
]

dev_requires = [
    "black",
    "flake8",
    "mypy",
    "pytest",
    "pytest-cov",
    "types-requests",
]

setup(
    name="vaultsync",
    version="1.0.0",
    description="Sync a local notes vault with Google Drive.",
    license="MIT",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages("src"),
    package_dir={"": "src"},
    package_data={
        "vaultsync": ["py.typed"],
    },
    install_requires=install_requires,
    extras_require={
        "dev": dev_requires,
    },
    zip_safe=False,
    entry_points={
        "console_scripts": ["vaultsync=vaultsync.cli:main"],
    },
    python_requires=">=3.8",
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Operating System :: Unix",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
    ],
)
