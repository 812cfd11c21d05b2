"""
Setup script for the child-growth mixed-effects analysis package
"""

from setuptools import setup, find_packages
import os

# Read README for long description
def read_file(filename):
    filepath = os.path.join(os.path.dirname(__file__), filename)
    if not os.path.exists(filepath):
        return ''
    with open(filepath, encoding='utf-8') as f:
        return f.read()

setup(
    name='child-growth-analysis',
    version='0.1.0',
    description='Frequentist and Bayesian mixed-effects models of child weight growth',
    long_description=read_file('README.md'),
    long_description_content_type='text/markdown',
    license='MIT',

    # Package discovery from src/
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    package_data={"child_growth": ["references.csv"]},

    python_requires='>=3.9',

    install_requires=[
        'numpy>=1.21.0',
        'scipy>=1.7.0',
        'matplotlib>=3.5.0',
        'seaborn>=0.12.0',
        'pandas>=1.5.0',
        'statsmodels>=0.13.0',
        'patsy>=0.5.2',
        'pymc>=5.10.0',  # Modern PyMC (v5+)
        'arviz>=0.17.0,<1.0',
    ],

    extras_require={
        'test': [
            'pytest>=7.0.0',
            'pytest-cov>=3.0.0',
        ],
        'dev': [
            'pytest>=7.0.0',
            'pytest-cov>=3.0.0',
            'black>=22.0.0',
            'flake8>=4.0.0',
        ],
    },

    entry_points={
        'console_scripts': [
            'child-growth-report=child_growth.report:main',
        ],
    },

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Topic :: Scientific/Engineering :: Mathematics',
    ],

    keywords='mixed-effects REML bayesian-inference pymc child-growth',
)
