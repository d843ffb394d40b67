"""Console entry point package for the ``ct`` command."""
