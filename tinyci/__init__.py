"""
tinyci
======
A minimal polling continuous-integration runner.

It watches declared source repositories, detects new commits, runs a
pipeline -> stage -> job -> task hierarchy against a fresh clone, records a
structured run history and exports build artifacts to the local filesystem.
"""

__version__ = "0.1.0"
