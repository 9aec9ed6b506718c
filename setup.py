from setuptools import setup, find_namespace_packages

setup(
    name='atmfjstc-zip-archive',
    version='0.1.0',

    author_email='atmfjstc@protonmail.com',

    package_dir={'': 'src'},
    packages=find_namespace_packages(where='src', include=['atmfjstc.*']),

    install_requires=[
        'termcolor>=1, <3',
    ],

    extras_require={
        'test': [
            'pytest>=7',
        ],
    },

    entry_points={
        'console_scripts': [
            'zip-archive=atmfjstc.lib.zip_archive.cli:main',
        ],
    },

    zip_safe=True,

    description="Reader and extractor for ZIP archives with cancellable, concurrent extraction",

    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: System :: Archiving",
        "Framework :: AsyncIO",
        "Typing :: Typed",
    ],
    python_requires='>=3.9',
)
