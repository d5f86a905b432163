"""shrew: a minimalist CLI coding agent driven by <run> directives."""
