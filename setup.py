# setup.py
from setuptools import setup, find_packages

setup(
    name="sheetflow",
    version="0.1.0",
    description="Streaming CSV/XLSX import and export with a parallel worker core",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.9",
    install_requires=[
        "openpyxl>=3.1",
        "setproctitle>=1.3",
        "tqdm>=4.60",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
)
