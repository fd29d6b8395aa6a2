from setuptools import setup, find_packages

setup(
    name='k3sctl',
    version='0.1.0',
    packages=find_packages(exclude=['k3sctl.tests', 'k3sctl.tests.*']),
    include_package_data=True,
    install_requires=[
        'typer[all]',
        'rich',
        'pydantic>=2',
        'PyYAML',
        'paramiko',
        'kubernetes',
        'jsonschema',
        'python-dotenv',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'k3sctl=k3sctl.cli:app'
        ]
    },
    author='Your Name',
    description='CLI for allocating, bootstrapping and tearing down self-managed K3s clusters',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
