"""
School Platform Quiz Engine
"""
