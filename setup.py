from setuptools import setup, find_packages


setup(
    name='torch_dla',
    version='0.1.0',
    packages=find_packages(exclude=['tests', 'tests.*', 'examples', 'examples.*']),
    install_requires=[
        'torch>=2.1',
        'numpy',
        'scipy',
        'h5py',
    ],
    extras_require={
        'test':['pytest'],
        'parallel':['mpi4py'],
        'docs':['sphinx']
    }
)
