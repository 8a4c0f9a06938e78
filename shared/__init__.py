"""BasinScope shared code."""
