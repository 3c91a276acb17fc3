from setuptools import setup, find_packages

setup(
    name="spatialews",
    version="0.1.0",
    author="spatialews developers",
    description="Spatial early-warning signals of regime shifts: patch-size distributions, "
                "spectral and generic indicators, and their null-model significance tests",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Topic :: Scientific/Engineering :: Mathematics",
    ],
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.19.0",
        "numba>=0.53.0",
        "scikit-image>=0.18.0",
        "scipy>=1.6.0",
        "tqdm>=4.50.0",
        "scikit-learn>=1.0",
        "pandas>=2.2.0"
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
)
