#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapreplicator',
    version='1.0.0',
    description='Poll a remote LDAP change-log and match changes against subscription queries',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'changelog', 'replication'],
    packages=find_packages(exclude=['bin']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'django',
        'pytz',
        'ldap_filter',
        'python-ldap',
    ],
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
