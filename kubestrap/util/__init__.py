"""Helpers shared by all kubestrap modules"""
