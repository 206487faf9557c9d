"""
Route testing package for the Safeguard API.
"""
