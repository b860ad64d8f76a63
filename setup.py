from setuptools import setup, find_packages

setup(
    name='inbox-rules',
    version='0.1.0',
    packages=find_packages(where='src'),
    package_dir={'': 'src'},
    install_requires=[
        'pyyaml',
        'python-dotenv',
        'pydantic>=2',
        'requests',
        'click',
    ],
    extras_require={
        'dev': ['pytest'],
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'inbox-rules=inbox_rules.cli:main',
        ],
    },
)
