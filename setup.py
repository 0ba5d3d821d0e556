import os
from setuptools import setup

def get_version():
    v = "0.0.0"
    with open('chronotree/__init__.py') as ifile:
        for line in ifile:
            if line[:7]=='version':
                v = line.split('=')[-1].strip()[1:-1]
                break
    return v

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
        name = "phylo-chronotree",
        version = get_version(),
        description = ("Calibration of phylograms to time trees by penalized likelihood"),
        long_description = long_description,
        long_description_content_type="text/markdown",
        license = "MIT",
        keywords = "Divergence times, fossil calibration, chronogram, relaxed molecular clock",
        packages=['chronotree'],
        install_requires = [
            'biopython>=1.66',
            'numpy>=1.10.4',
            'pandas>=0.17.1',
            'scipy>=1.5',
            'matplotlib>=2.0'
        ],
        extras_require = {
            'test':['pytest'],
        },
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Topic :: Scientific/Engineering :: Bio-Informatics",
            "License :: OSI Approved :: MIT License",
            "Programming Language :: Python :: 3",
            ],
        scripts=['bin/chronotree']
    )
