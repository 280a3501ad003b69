#!/usr/bin/python3 -O
# vim: fileencoding=utf-8

import setuptools

if __name__ == '__main__':
    setuptools.setup(
        name='rbdstore',
        version=open('version').read().strip(),
        description='Ceph RBD storage pool driver',
        license='LGPL2.1+',
        packages=setuptools.find_packages(),
        python_requires='>=3.8',
        install_requires=[
            'lxml',
        ],
        extras_require={
            'test': ['pytest'],
        },
        entry_points={
            'rbdstore.storage': [
                'rbd = rbdstore.storage.rbd:RBDPool',
            ],
        })
