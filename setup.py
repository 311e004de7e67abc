#!/usr/bin/env python
# -*- coding: utf-8 -*-

from setuptools import setup

setup(
        name = 'pymdview',
        version = "0.1.0",
        description = "Restricted markdown to HTML converter with escaped source and preview views",
        license = "MIT",
        packages = ["pymdview"],
        scripts = ["bin/pymdview"],
        keywords = ["markup", "markdown", "html", "preview"],
        python_requires = ">=3.6",
        install_requires = []
        )
