"""themegate - commit-msg gate for storefront theme repositories.

Boots the local theme dev server for a bounded window, watches its output for
failure signatures, then runs the theme linter before letting a commit through.
"""

__version__ = "0.1.0"
