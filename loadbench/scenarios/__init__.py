"""Example scenarios and the run plans built from them."""
