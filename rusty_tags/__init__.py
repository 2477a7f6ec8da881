"""
rusty-tags - tags files for a cargo project and all of its dependencies.

Resolves the dependency graph of a cargo project, runs ctags over the
sources of every package and writes a tags file into each package's
source root, in vi (merged) or emacs (included) format.

Your editor wanted to jump into serde. Now it can. Try not to get lost
in the macros.
"""

__version__ = "3.0.0"
__author__ = "rusty-tags Contributors"
