"""HTTP API for the desktop.

This package provides a Flask application that exposes the kernel's
processes, windows, apps and file system as JSON.  It is an **optional**
extra — install with::

    pip install omni-os[web]

The ``create_app`` factory in ``app.py`` boots a kernel (or serves one
it is given) and maps core error kinds onto HTTP status codes.
"""
