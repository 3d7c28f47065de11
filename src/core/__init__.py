"""
Core wiring for the Viseu letter guard.

Exports:
    - SecurityContainer: One instance of every stateful pipeline component
    - build_container: Builds a container from SecurityConfig
"""

from .container import SecurityContainer, build_container

__all__ = ["SecurityContainer", "build_container"]
