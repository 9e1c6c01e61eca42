#
from setuptools import setup, find_packages

def get_version():
    """
    Get version number from the epidemic_state_space package.

    The easiest way would be to just ``import epidemic_state_space``, but note
    that this may fail if the dependencies have not been installed yet.
    Instead, the version number lives in a simple version_info module, that we
    import here by temporarily adding its directory to the pythonpath.
    """
    import os
    import sys

    sys.path.append(os.path.abspath(os.path.join('src', 'epidemic_state_space')))
    from version_info import VERSION as version
    sys.path.pop()

    return version

def get_readme():
    """
    Load README.md text for use as description.
    """
    with open('README.md') as f:
        return f.read()

setup(
    # Module name (lowercase)
    name='epidemic_state_space',

    # Version
    version=get_version(),

    description='Age-structured stochastic epidemic model: simulation, model spec and sampler seeding.',

    long_description=get_readme(),

    long_description_content_type='text/markdown',

    license='MIT license',

    url='',

    # Packages to include
    package_dir={'': 'src'},
    packages=find_packages('src'),

    python_requires='>=3.8',

    # List of dependencies
    install_requires=[
        # Dependencies go here!
        'numpy',
        'pandas',
        'scipy',
        'joblib',
    ],
    extras_require={
        'dev': [
            # Flake8 for code style checking
            'flake8>=3',
            'pytest',
            'pytest-cov',
        ],
    },
    entry_points={
        'console_scripts': [
            'epidemic-ssm=epidemic_state_space.runner:main',
        ],
    },
)
