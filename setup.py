import setuptools

setuptools.setup(
    name="joinpipe",
    version="0.1.0",
    description="Keyed two-stream joins for small-scale stream processing",
    packages=[
        'joinpipe', 'joinpipe.message', 'joinpipe.node_queue',
        'joinpipe.node_classes', 'joinpipe.join', 'joinpipe.utils',],
    install_requires=[
        'PyYAML',
        'redis',
        'timed-dict',
        'prettytable',
    ],
    extras_require={
        'test': ['pytest'],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
