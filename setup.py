"""Setup configuration for BusMatch."""

from setuptools import setup, find_packages

with open("docs/README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="busmatch",
    version="0.1.0",
    description="Live bus alternatives and arrival times for planned itineraries in Taiwan",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
    python_requires=">=3.10",
    install_requires=[
        "requests>=2.25.0",
        "urllib3>=1.26.0",
        "python-dotenv>=1.0.0",
        "tzdata",
    ],
    extras_require={
        "dev": ["pytest>=6.0", "black", "flake8"],
    },
)
