"""
Setup script for PeerLink - Point-to-point messaging and calling session core.

This package provides:
- A single auto-recovering data connection between two paired users
- Simultaneous-connect arbitration and generation-tagged event handling
- One audio/video call at a time with local media cleanup
- Text messages with inline file attachments
- An in-process loopback transport and a command-line demo
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='peerlink-messenger',
    version='1.0.0',
    author='peerlink contributors',
    description='Connection lifecycle core for point-to-point messaging and calling over a rendezvous-based peer transport',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'Framework :: AsyncIO',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.8',
    install_requires=[
        'rich>=13.7.0',
        'aiofiles>=23.2.1',
        'tomli>=2.0.1; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'peerlink=peerlink.main:main',
        ],
    },
)
