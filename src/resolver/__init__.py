"""Stack Composer dependency resolver.

Usage::

    from src.resolver import resolve

    stack = resolve(["tailwind", "react"], registry)
    stack.names       # ['react', 'tailwind']
    stack.warnings    # advisory StackWarning records
"""

from src.resolver.advisories import compatibility_warnings
from src.resolver.resolver import DependencyResolver, resolve
from src.resolver.stack import ResolvedStack

__all__ = [
    "DependencyResolver",
    "ResolvedStack",
    "compatibility_warnings",
    "resolve",
]
