#! /usr/bin/python
# -*- coding: utf-8 -*-

from setuptools import find_packages, setup


setup(
    name="ceph-csi-upgrade-tests",
    version="1.0",
    packages=find_packages(include=["csi_utilities", "csi_utilities.*", "libs", "libs.*"]),
    include_package_data=True,
    install_requires=[
        "kubernetes",
        "openshift-python-wrapper",
        "timeout-sampler",
        "pyhelper-utils",
        "bitmath",
        "pyyaml",
        "pytest",
        "pytest-testconfig",
        "pytest-dependency",
    ],
    python_requires=">=3.10",
)
