"""Access to the bootstrapped cluster"""
