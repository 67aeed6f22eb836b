"""
binship - build-and-release pipeline for single-binary network services.

Turns a Cargo source tree into one release binary, packages it into a
minimal runtime image, publishes the image to a registry, and runs it as a
named container on a host.

- binship.core: errors, logging, retry primitives
- binship.release: pipeline stages, configuration, runner
- binship.cli: the ``binship`` command
"""

__version__ = "0.1.0"
