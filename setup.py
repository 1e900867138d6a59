"""Packaging for notetree (src layout, console script `notetree`)."""

from setuptools import find_packages, setup

setup(
    name="notetree",
    version="0.1.0",
    description="Hierarchical notes stored as plain files, with a change watcher",
    python_requires=">=3.11",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "click>=8.1",
        "python-frontmatter>=1.0",
        "PyYAML>=6.0",
        "inotify_simple>=1.3; sys_platform == 'linux'",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "notetree=notetree.cli:cli",
        ],
    },
)
