"""
Setup file.
"""

import os

from setuptools import setup

URL = "https://github.com/metax-lang/metax"
KEYWORDS = "compiler bootstrap cascade nasm toolchain build watcher assembly"
HERE = os.path.dirname(os.path.abspath(__file__))



if __name__ == "__main__":
    setup(
        maintainer="metax developers",
        keywords=KEYWORDS,
        url=URL,
        include_package_data=True)
