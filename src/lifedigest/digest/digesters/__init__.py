"""Built-in digesters."""
