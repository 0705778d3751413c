"""
Setup script for the Epistemic GLMM tutorial package
"""

from setuptools import setup, find_packages

setup(
    name='epistemic-glmm',
    version='0.1.0',
    description='Bootstrap vs Bayesian epistemic uncertainty for a bird-count Poisson GLMM',
    license='MIT',

    # Package discovery from src/
    packages=find_packages(where="src"),
    package_dir={"": "src"},

    python_requires='>=3.10',

    install_requires=[
        'numpy>=1.24.0',
        'scipy>=1.9.0',
        'pandas>=1.5.0',
        'statsmodels>=0.14.0',
        'patsy>=0.5.3',
        'matplotlib>=3.5.0,<3.11',
        'seaborn>=0.12.0',
        'tqdm>=4.62.0',
        'pymc>=5.10.0',
        'arviz>=0.17.0',
        'bambi>=0.14.0',
    ],

    extras_require={
        'dev': [
            'pytest>=7.0.0',
            'pytest-cov>=3.0.0',
        ],
    },

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'Intended Audience :: Education',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Mathematics',
    ],

    keywords='glmm bootstrap bayesian-inference uncertainty mcmc ecology',
)
