from setuptools import setup, find_packages

setup(
    name="vol-surface-stream",
    version="0.3.0",
    description="Live implied volatility surfaces from streaming equity option quotes",
    author="Leo",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "pandas>=2.0",
        "scipy>=1.11",
        "loguru>=0.7",
    ],
    extras_require={
        "dev": ["pytest>=7.0", "pytest-asyncio>=0.23", "black", "flake8"],
    },
    entry_points={
        "console_scripts": [
            "vol-surface-stream=main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Topic :: Office/Business :: Financial",
        "Topic :: Scientific/Engineering",
    ],
)
