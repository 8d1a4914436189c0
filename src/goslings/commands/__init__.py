"""Built-in ``goslings`` sub-commands."""
