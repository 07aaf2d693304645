"""Command line entry points"""
