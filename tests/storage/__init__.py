"""
Storage layer tests: validation, errors, retry, both backends, selection and
the repository facade.
"""
