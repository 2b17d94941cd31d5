"""Solution portal: catalog navigation and solution page viewing."""

__version__ = "0.1.0"
