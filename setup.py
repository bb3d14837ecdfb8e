"""
Setup script for the flightseq package
Install in edit mode with: `pip install -e .`
"""

from setuptools import setup, find_packages

setup(
    name='flightseq',
    version='0.1',
    description="Timed action sequencing for quadcopter demo flights",
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'numpy',
        'pymavlink',
        'loguru',
        'pyyaml',
    ],
    extras_require={
        'test': ['pytest'],
    },
    scripts=[
        'flightseq/flightseq_main.py',
    ]  # Provided files can be run from CLI
)
