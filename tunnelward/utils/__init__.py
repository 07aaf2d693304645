"""Configuration, logging, errors and time"""
