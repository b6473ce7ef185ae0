"""
School Platform Quiz Engine backend: API, persistence and quiz services
"""
